"""Typed ledger failures.

Every failure a ledger operation can report derives from ``LedgerError`` so
HTTP handlers, the scheduler and the client sync package can classify it
without string matching. ``code`` is the stable wire identifier, ``status``
the HTTP status the API layer answers with.
"""


class LedgerError(Exception):
    """Base class for all ledger failures"""
    code = 'ledger_error'
    status = 400
    # Expected failures are information for the user, not defects
    expected = False


class InvalidRequest(LedgerError):
    """Malformed request payload"""
    code = 'bad_request'
    status = 400


# ============ Lookup failures ============

class GroupNotFound(LedgerError):
    code = 'group_not_found'
    status = 404

    def __init__(self, group_id):
        self.group_id = group_id
        super().__init__(f"Group {group_id} not found")


class RoundNotFound(LedgerError):
    code = 'round_not_found'
    status = 404

    def __init__(self, round_id):
        self.round_id = round_id
        super().__init__(f"Round {round_id} not found")


class DrawNotFound(LedgerError):
    code = 'draw_not_found'
    status = 404

    def __init__(self, draw_id):
        self.draw_id = draw_id
        super().__init__(f"Draw {draw_id} not found")


class BidNotFound(LedgerError):
    code = 'bid_not_found'
    status = 404

    def __init__(self, bid_id):
        self.bid_id = bid_id
        super().__init__(f"Active bid {bid_id} not found")


class MemberNotInGroup(LedgerError):
    code = 'member_not_in_group'
    status = 403

    def __init__(self, member_id, group_id):
        self.member_id = member_id
        self.group_id = group_id
        super().__init__(f"Member {member_id} does not belong to group {group_id}")


# ============ Lifecycle failures ============

class InvalidTransition(LedgerError):
    """Requested status change is not allowed from the current status"""
    code = 'invalid_transition'
    status = 409

    def __init__(self, entity, current, target):
        self.current = current
        self.target = target
        super().__init__(f"{entity} cannot move from {current} to {target}")


class RoundNotActive(LedgerError):
    code = 'round_not_active'
    status = 409
    expected = True

    def __init__(self, round_id, status):
        self.round_id = round_id
        self.round_status = status
        super().__init__(f"Bidding round {round_id} is not active (status={status})")


class DrawNotReady(LedgerError):
    """Finalize requested before the draw's countdown could have finished"""
    code = 'draw_not_ready'
    status = 409
    expected = True

    def __init__(self, draw_id, seconds_early):
        self.draw_id = draw_id
        self.seconds_early = seconds_early
        super().__init__(f"Draw {draw_id} cannot be revealed for another {seconds_early:.1f}s")


# ============ Bid validation ============

class BidTooLow(LedgerError):
    code = 'bid_too_low'
    status = 422
    expected = True

    def __init__(self, amount, minimum):
        self.amount = amount
        self.minimum = minimum
        super().__init__(f"Bid must be at least {minimum}, got {amount}")


class InvalidBid(LedgerError):
    code = 'invalid_bid'
    status = 422
    expected = True


class NoEligibleMembers(LedgerError):
    code = 'no_eligible_members'
    status = 409
    expected = True

    def __init__(self, group_id):
        self.group_id = group_id
        super().__init__(f"No eligible members for a draw in group {group_id}")


class InvalidDeadline(LedgerError):
    code = 'invalid_deadline'
    status = 422

    def __init__(self, deadline):
        self.deadline = deadline
        super().__init__(f"Deadline {deadline} must be a future instant")


class InvalidDuration(LedgerError):
    code = 'invalid_duration'
    status = 422

    def __init__(self, duration):
        self.duration = duration
        super().__init__(f"Duration must be a positive number of seconds, got {duration!r}")


class DrawInProgress(LedgerError):
    code = 'draw_in_progress'
    status = 409
    expected = True

    def __init__(self, group_id, draw_id):
        self.group_id = group_id
        self.draw_id = draw_id
        super().__init__(f"Group {group_id} already has an unrevealed draw ({draw_id})")


# ============ Defects ============

class InvariantViolation(LedgerError):
    """A record broke a ledger invariant; callers must refetch, never trust it"""
    code = 'invariant_violation'
    status = 500
