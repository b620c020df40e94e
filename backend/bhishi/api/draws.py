from flask import Blueprint, jsonify, request, current_app

from bhishi.api import int_field
from bhishi.services.ledger import draws as ledger
from bhishi.services.ledger.scheduler import schedule_draw_reveal


draws = Blueprint('draws', __name__)


@draws.route('/groups/<int:group_id>/draws', methods=['POST'])
def create_draw(group_id):
    data = request.get_json(silent=True) or {}
    draw = ledger.create_draw(group_id, duration_seconds=int_field(data, 'duration_seconds'))
    schedule_draw_reveal(current_app._get_current_object(), draw.id)
    return jsonify(draw.to_dict()), 201


@draws.route('/groups/<int:group_id>/draws', methods=['GET'])
def draw_history(group_id):
    return jsonify([h.to_dict() for h in ledger.draw_history(group_id)])


@draws.route('/groups/<int:group_id>/draws/latest', methods=['GET'])
def latest_draw(group_id):
    draw = ledger.latest_draw(group_id)
    return jsonify(draw.to_dict() if draw else None)


@draws.route('/draws/<int:draw_id>', methods=['GET'])
def get_draw(draw_id):
    return jsonify(ledger.get_draw(draw_id).to_dict())


@draws.route('/draws/<int:draw_id>/finalize', methods=['POST'])
def finalize_draw(draw_id):
    draw = ledger.finalize_draw(draw_id)
    return jsonify(draw.to_dict())
