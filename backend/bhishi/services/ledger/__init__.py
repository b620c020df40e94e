"""Round ledger: the single source of truth for bidding rounds and draws.

HTTP routes, socket handlers and the deadline scheduler all mutate rounds
and draws only through the operations in ``rounds`` and ``draws``. Each
operation runs in one transaction, settles lifecycle transitions with a
conditional update so concurrent callers cannot double-finalize, and
publishes the new record on the change feed after commit.
"""
