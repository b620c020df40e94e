from flask import Blueprint, jsonify, request, current_app

from bhishi.api import int_field
from bhishi.errors import InvalidRequest
from bhishi.services.ledger import rounds as ledger
from bhishi.services.ledger.scheduler import schedule_round_close
from bhishi.sync.clock import to_ledger_time


rounds = Blueprint('rounds', __name__)


def _flag(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes')
    return bool(value)


@rounds.route('/groups/<int:group_id>/rounds', methods=['POST'])
def create_round(group_id):
    data = request.get_json(silent=True) or {}
    deadline = data.get('deadline')
    if deadline is not None:
        try:
            deadline = to_ledger_time(deadline)
        except (TypeError, ValueError, AttributeError):
            raise InvalidRequest('deadline must be an ISO-8601 instant')
    rnd = ledger.create_round(
        group_id,
        deadline=deadline,
        minimum_bid=int_field(data, 'minimum_bid', default=0),
        prize_amount=int_field(data, 'prize_amount'),
    )
    return jsonify(rnd.to_dict()), 201


@rounds.route('/groups/<int:group_id>/rounds', methods=['GET'])
def list_rounds(group_id):
    return jsonify([r.to_dict() for r in ledger.list_rounds(group_id)])


@rounds.route('/groups/<int:group_id>/rounds/latest', methods=['GET'])
def latest_round(group_id):
    rnd = ledger.latest_round(group_id)
    # null rather than 404: "no round yet" is a normal state for pollers
    return jsonify(rnd.to_dict(include_bids=True) if rnd else None)


@rounds.route('/rounds/<int:round_id>', methods=['GET'])
def get_round(round_id):
    include_bids = _flag(request.args.get('include_bids', 'true'))
    return jsonify(ledger.get_round(round_id).to_dict(include_bids=include_bids))


@rounds.route('/rounds/<int:round_id>/start', methods=['POST'])
def start_round(round_id):
    rnd = ledger.start_round(round_id)
    if rnd.end_time is not None:
        schedule_round_close(current_app._get_current_object(), rnd.id)
    return jsonify(rnd.to_dict())


@rounds.route('/rounds/<int:round_id>/bids', methods=['GET'])
def list_bids(round_id):
    include_inactive = _flag(request.args.get('include_inactive', 'false'))
    bids = ledger.list_bids(round_id, include_inactive=include_inactive)
    return jsonify([b.to_dict() for b in bids])


@rounds.route('/rounds/<int:round_id>/bids', methods=['POST'])
def place_bid(round_id):
    data = request.get_json(silent=True) or {}
    bid = ledger.place_bid(
        round_id,
        int_field(data, 'member_id', required=True),
        int_field(data, 'amount', required=True),
    )
    return jsonify({
        'message': 'Bid placed',
        'bid': bid.to_dict(),
        'round': ledger.get_round(round_id).to_dict(),
    }), 201


@rounds.route('/rounds/<int:round_id>/bids/<int:bid_id>/withdraw', methods=['POST'])
def withdraw_bid(round_id, bid_id):
    data = request.get_json(silent=True) or {}
    rnd = ledger.withdraw_bid(round_id, bid_id, int_field(data, 'member_id', required=True))
    return jsonify({'message': 'Bid withdrawn', 'round': rnd.to_dict()})


@rounds.route('/rounds/<int:round_id>/close', methods=['POST'])
def close_round(round_id):
    data = request.get_json(silent=True) or {}
    rnd = ledger.close_round(round_id, defer_winner=_flag(data.get('defer_winner', False)))
    return jsonify(rnd.to_dict(include_bids=True))


@rounds.route('/rounds/<int:round_id>/complete', methods=['POST'])
def complete_round(round_id):
    rnd = ledger.complete_round(round_id)
    return jsonify(rnd.to_dict(include_bids=True))


@rounds.route('/groups/<int:group_id>/members/<int:member_id>/stats', methods=['GET'])
def member_stats(group_id, member_id):
    return jsonify(ledger.bidding_stats(group_id, member_id))
