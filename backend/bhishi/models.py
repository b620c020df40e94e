from bhishi import db
from bhishi.sync.clock import utcnow, to_iso
from bhishi.sync.records import RoundStatus, DrawState


class Group(db.Model):
    __tablename__ = 'bhishi_group'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    monthly_amount = db.Column(db.Integer, nullable=False, default=0)
    group_type = db.Column(db.String(32), nullable=False, default='lucky_draw')  # lucky_draw, bidding
    # Incremented once per settled round/draw via a conditional update
    current_round = db.Column(db.Integer, nullable=False, default=0)
    members = db.relationship('Member', back_populates='group', order_by='Member.id')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'monthly_amount': self.monthly_amount,
            'group_type': self.group_type,
            'current_round': self.current_round,
            'member_count': len(self.members),
        }


class Member(db.Model):
    __tablename__ = 'group_member'
    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.Integer, db.ForeignKey('bhishi_group.id'), nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), nullable=False, default='active')  # active, pending
    has_won = db.Column(db.Boolean, nullable=False, default=False)
    group = db.relationship('Group', back_populates='members')

    def to_dict(self):
        return {
            'id': self.id,
            'group_id': self.group_id,
            'name': self.name,
            'status': self.status,
            'has_won': self.has_won,
        }


class BidRound(db.Model):
    __tablename__ = 'bid_round'
    __table_args__ = (db.UniqueConstraint('group_id', 'round_number', name='uq_bid_round_group_number'),)
    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.Integer, db.ForeignKey('bhishi_group.id'), nullable=False, index=True)
    round_number = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=RoundStatus.OPEN.value)
    start_time = db.Column(db.DateTime, nullable=False, default=utcnow)
    end_time = db.Column(db.DateTime, nullable=True)
    minimum_bid = db.Column(db.Integer, nullable=False, default=0)
    prize_amount = db.Column(db.Integer, nullable=False, default=0)
    # Set only on completion, in the same statement as status=completed
    winner_id = db.Column(db.Integer, db.ForeignKey('group_member.id'), nullable=True)
    winner_name = db.Column(db.String(64), nullable=True)
    winning_bid = db.Column(db.Integer, nullable=True)
    # Denormalized for display
    current_lowest_bid = db.Column(db.Integer, nullable=True)
    total_bids = db.Column(db.Integer, nullable=False, default=0)
    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    bids = db.relationship('MemberBid', back_populates='round', lazy='dynamic')

    @property
    def state(self):
        return RoundStatus(self.status)

    def to_dict(self, include_bids=False):
        payload = {
            'id': self.id,
            'group_id': self.group_id,
            'round_number': self.round_number,
            'status': self.status,
            'start_time': to_iso(self.start_time),
            'end_time': to_iso(self.end_time),
            'minimum_bid': self.minimum_bid,
            'prize_amount': self.prize_amount,
            'winner_id': self.winner_id,
            'winner_name': self.winner_name,
            'winning_bid': self.winning_bid,
            'current_lowest_bid': self.current_lowest_bid,
            'total_bids': self.total_bids,
            'version': self.version,
            'updated_at': to_iso(self.updated_at),
        }
        if include_bids:
            active = self.bids.filter_by(is_active=True).order_by(MemberBid.bid_amount, MemberBid.bid_time, MemberBid.id)
            payload['bids'] = [b.to_dict(winning=(b.member_id == self.winner_id)) for b in active]
        return payload


class MemberBid(db.Model):
    __tablename__ = 'member_bid'
    __table_args__ = (db.Index('ix_member_bid_round_member_active', 'round_id', 'member_id', 'is_active'),)
    id = db.Column(db.Integer, primary_key=True)
    round_id = db.Column(db.Integer, db.ForeignKey('bid_round.id'), nullable=False, index=True)
    member_id = db.Column(db.Integer, db.ForeignKey('group_member.id'), nullable=False)
    member_name = db.Column(db.String(64), nullable=False)
    bid_amount = db.Column(db.Integer, nullable=False)
    # Stamped by the ledger, never by the client
    bid_time = db.Column(db.DateTime, nullable=False, default=utcnow)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    superseded_at = db.Column(db.DateTime, nullable=True)
    round = db.relationship('BidRound', back_populates='bids')

    def to_dict(self, winning=None):
        payload = {
            'id': self.id,
            'round_id': self.round_id,
            'member_id': self.member_id,
            'member_name': self.member_name,
            'bid_amount': self.bid_amount,
            'bid_time': to_iso(self.bid_time),
            'is_active': self.is_active,
        }
        if winning is not None:
            payload['is_winning'] = winning
        return payload


class Draw(db.Model):
    __tablename__ = 'draw'
    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.Integer, db.ForeignKey('bhishi_group.id'), nullable=False, index=True)
    round_number = db.Column(db.Integer, nullable=False)
    start_timestamp = db.Column(db.DateTime, nullable=False, default=utcnow)
    duration_seconds = db.Column(db.Integer, nullable=False)
    revealed = db.Column(db.Boolean, nullable=False, default=False)
    prize_amount = db.Column(db.Integer, nullable=False, default=0)
    # Chosen at creation; never part of the wire record
    selected_member_id = db.Column(db.Integer, db.ForeignKey('group_member.id'), nullable=False)
    selected_name = db.Column(db.String(64), nullable=False)
    # Stamped from the selection when revealed flips to true
    winner_member_id = db.Column(db.Integer, db.ForeignKey('group_member.id'), nullable=True)
    winner_name = db.Column(db.String(64), nullable=True)
    revealed_at = db.Column(db.DateTime, nullable=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    @property
    def state(self):
        return DrawState.of(self.revealed)

    def to_dict(self):
        return {
            'id': self.id,
            'group_id': self.group_id,
            'round_number': self.round_number,
            'start_timestamp': to_iso(self.start_timestamp),
            'duration_seconds': self.duration_seconds,
            'revealed': self.revealed,
            'winner_member_id': self.winner_member_id,
            'winner_name': self.winner_name,
            'prize_amount': self.prize_amount,
            'revealed_at': to_iso(self.revealed_at),
            'version': self.version,
        }


class DrawHistory(db.Model):
    __tablename__ = 'draw_history'
    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.Integer, db.ForeignKey('bhishi_group.id'), nullable=False, index=True)
    draw_id = db.Column(db.Integer, db.ForeignKey('draw.id'), nullable=False, unique=True)
    round_number = db.Column(db.Integer, nullable=False)
    winner_member_id = db.Column(db.Integer, db.ForeignKey('group_member.id'), nullable=False)
    winner_name = db.Column(db.String(64), nullable=False)
    amount = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'group_id': self.group_id,
            'draw_id': self.draw_id,
            'round_number': self.round_number,
            'winner_member_id': self.winner_member_id,
            'winner_name': self.winner_name,
            'amount': self.amount,
            'created_at': to_iso(self.created_at),
        }
