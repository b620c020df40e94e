from flask import Blueprint, jsonify

main = Blueprint('main', __name__)

@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the Bhishi ledger server!'})

@main.route('/health')
def health():
    return jsonify({'status': 'healthy'})
