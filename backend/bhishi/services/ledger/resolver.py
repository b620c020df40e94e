"""Winner selection. Pure functions, no database access."""
import random


_system_random = random.SystemRandom()


def pick_lowest_bid(bids):
    """Return the winning bid of a reverse auction, or None without active bids.

    Lowest amount wins; ties go to the earliest ledger bid_time, then to the
    earliest inserted bid.
    """
    active = [b for b in bids if b.is_active]
    if not active:
        return None
    return min(active, key=lambda b: (b.bid_amount, b.bid_time, b.id))


def pick_random_member(members, rng=None):
    """Uniform choice among eligible members, made once at draw creation."""
    candidates = list(members)
    if not candidates:
        raise ValueError('no eligible members to draw from')
    return (rng or _system_random).choice(candidates)
