"""Access to ledger operations from the sync components.

Watchers talk to the ledger only through a gateway so the same monitor code
can run against the in-process ledger (server watchdog, tests) or a remote
API client. Every method returns a wire record (``to_dict`` shape) or None
and raises ``LedgerError`` subclasses for ledger failures.
"""
from abc import ABC, abstractmethod
from contextlib import nullcontext
from typing import Dict, Optional

from flask import current_app, has_app_context

from bhishi.services.ledger import rounds as round_ledger
from bhishi.services.ledger import draws as draw_ledger


class LedgerGateway(ABC):
    @abstractmethod
    def fetch_round(self, round_id) -> Dict:
        ...

    @abstractmethod
    def close_round(self, round_id) -> Dict:
        ...

    @abstractmethod
    def latest_round(self, group_id) -> Optional[Dict]:
        ...

    @abstractmethod
    def fetch_draw(self, draw_id) -> Dict:
        ...

    @abstractmethod
    def finalize_draw(self, draw_id) -> Dict:
        ...

    @abstractmethod
    def latest_draw(self, group_id) -> Optional[Dict]:
        ...


class AppLedgerGateway(LedgerGateway):
    """Calls the ledger services inside the given Flask app's context."""

    def __init__(self, app):
        self.app = app

    def _context(self):
        # Reuse an already pushed context so callers share its session
        if has_app_context() and current_app._get_current_object() is self.app:
            return nullcontext()
        return self.app.app_context()

    def fetch_round(self, round_id):
        with self._context():
            return round_ledger.get_round(round_id).to_dict()

    def close_round(self, round_id):
        with self._context():
            return round_ledger.close_round(round_id).to_dict()

    def latest_round(self, group_id):
        with self._context():
            rnd = round_ledger.latest_round(group_id)
            return rnd.to_dict() if rnd else None

    def fetch_draw(self, draw_id):
        with self._context():
            return draw_ledger.get_draw(draw_id).to_dict()

    def finalize_draw(self, draw_id):
        with self._context():
            return draw_ledger.finalize_draw(draw_id).to_dict()

    def latest_draw(self, group_id):
        with self._context():
            draw = draw_ledger.latest_draw(group_id)
            return draw.to_dict() if draw else None
