import os
import json
from datetime import timedelta
from flask import Flask, Blueprint, request, jsonify, current_app, has_app_context, Response
from web3 import Web3

from models import db
from minter import RoseMinter, MintError, DEFAULT_BACKGROUND, FINISH_POLICY_OPEN
from rose import PALETTE_SIZE
from token_uri import decode_data_uri
from vrf_coordinator import VRFCoordinator, LinkLedger, Web3LinkBalance

# Configure Web3
AVALANCHE_TESTNET_RPC = "https://api.avax-test.network/ext/bc/C/rpc"
MINTER_ADDRESS = "0x1E8461598caf86db994a0395A9389716e99f6d87"
VRF_KEY_HASH = "0x2ed0feb3e7fd2022120aa84fab1945545a9f2ffc9076fd6156fa96eaff4c1311"
VRF_FEE = 10 ** 17  # 0.1 LINK

bp = Blueprint('rosemint', __name__)


def get_minter():
    return current_app.extensions['rose_minter']


def validate_mint_request(data):
    try:
        if not Web3.is_address(data['address']):
            return {'success': False, 'error': 'Invalid wallet address'}

        return {'success': True}
    except Exception as e:
        return {'success': False, 'error': str(e)}


def validate_palette_request(data):
    if not isinstance(data, dict):
        return {'success': False, 'error': 'Invalid JSON body'}
    palette = data.get('palette')
    if not isinstance(palette, list) or len(palette) != PALETTE_SIZE:
        return {'success': False, 'error': f'Palette must be a list of {PALETTE_SIZE} colors'}
    caller = data.get('address')
    if caller is not None and not Web3.is_address(caller):
        return {'success': False, 'error': 'Invalid wallet address'}
    return {'success': True}


@bp.errorhandler(MintError)
def handle_mint_error(e):
    current_app.logger.warning(f'{e.kind}: {e}')
    return jsonify({'success': False, 'error': e.kind, 'message': str(e)}), e.status_code


@bp.route('/mint/request', methods=['POST'])
def request_mint():
    if not request.is_json:
        return jsonify({'error': 'Missing JSON data'}), 400

    data = request.get_json()
    validation = validate_mint_request(data)
    if not validation['success']:
        return jsonify({'error': validation['error']}), 400

    minter = get_minter()
    request_id = minter.request_mint(data['address'])
    token_id = minter.get_request(request_id).token_id

    return jsonify({
        'success': True,
        'requestId': request_id,
        'tokenId': token_id,
        'message': f'Mint requested for token {token_id}'
    })


@bp.route('/vrf/fulfill', methods=['POST'])
def fulfill_randomness():
    """Callback for the randomness coordinator, authenticated by a shared token"""
    secret = current_app.config.get('VRF_COORDINATOR_SECRET')
    if not secret or request.headers.get('X-VRF-Coordinator-Token') != secret:
        current_app.logger.warning('Rejected randomness callback with bad coordinator token')
        return jsonify({'error': 'Forbidden'}), 403

    if not request.is_json:
        return jsonify({'error': 'Missing JSON data'}), 400

    data = request.get_json()
    if not isinstance(data, dict):
        return jsonify({'error': 'Invalid JSON body'}), 400
    if 'requestId' not in data or 'randomness' not in data:
        return jsonify({'error': 'Missing requestId or randomness'}), 400

    try:
        randomness = int(data['randomness'])
    except (TypeError, ValueError):
        return jsonify({'error': 'Randomness must be an integer'}), 400

    applied = get_minter().on_randomness_received(data['requestId'], randomness)
    return jsonify({'success': True, 'applied': applied})


@bp.route('/vrf/simulate/<request_id>', methods=['POST'])
def simulate_randomness(request_id):
    """Answer a request from the in-process coordinator (development only)"""
    coordinator = get_minter().coordinator
    if not isinstance(coordinator, VRFCoordinator):
        return jsonify({'error': 'No local coordinator configured'}), 404

    data = request.get_json(silent=True) or {}
    status = coordinator.get_request_status(request_id)
    if 'error' in status:
        return jsonify(status), 404
    if status['status'] != 'pending':
        return jsonify({'error': 'Request already fulfilled'}), 409

    randomness = coordinator.fulfill(request_id, data.get('randomness'))
    return jsonify({'success': True, 'randomness': str(randomness)})


@bp.route('/mint/<int:token_id>/finish', methods=['POST'])
def finish_mint(token_id):
    if not request.is_json:
        return jsonify({'error': 'Missing JSON data'}), 400

    data = request.get_json()
    validation = validate_palette_request(data)
    if not validation['success']:
        return jsonify({'error': validation['error']}), 400

    try:
        token_uri = get_minter().finish_mint(token_id, data['palette'], caller=data.get('address'))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    return jsonify({
        'success': True,
        'tokenId': token_id,
        'tokenURI': token_uri
    })


@bp.route('/tokens/<int:token_id>', methods=['GET'])
def get_token(token_id):
    record = get_minter().get_record(token_id)
    return jsonify(record.to_dict())


@bp.route('/tokens/<int:token_id>/metadata', methods=['GET'])
def get_token_metadata(token_id):
    token_uri = get_minter().token_uri(token_id)
    if not token_uri:
        return jsonify({'error': 'Token not finished yet'}), 404

    _, payload = decode_data_uri(token_uri)
    return jsonify(json.loads(payload))


@bp.route('/tokens/<int:token_id>/image.svg', methods=['GET'])
def get_token_image(token_id):
    token_uri = get_minter().token_uri(token_id)
    if not token_uri:
        return jsonify({'error': 'Token not finished yet'}), 404

    _, payload = decode_data_uri(token_uri)
    _, svg = decode_data_uri(json.loads(payload)['image'])
    return Response(svg, mimetype='image/svg+xml')


@bp.route('/events', methods=['GET'])
def get_events():
    kind = request.args.get('kind')
    return jsonify([event.to_dict() for event in get_minter().events(kind)])


@bp.route('/requests/pending', methods=['GET'])
def get_pending_requests():
    try:
        older_than = int(request.args.get('older_than', 0))
    except ValueError:
        return jsonify({'error': 'older_than must be a number of seconds'}), 400

    stale = get_minter().stale_requests(timedelta(seconds=older_than))
    return jsonify([req.to_dict() for req in stale])


@bp.route('/status', methods=['GET'])
def status():
    minter = get_minter()
    try:
        balance = minter.link_balance.balance_of(minter.address)
    except Exception as e:
        current_app.logger.error(f'Error fetching LINK balance: {str(e)}')
        balance = None

    return jsonify({
        'minter_address': minter.address,
        'token_counter': minter.token_counter,
        'fee': str(minter.fee),
        'link_balance': str(balance) if balance is not None else None,
        'has_funds': balance is not None and balance >= minter.fee,
        'finish_policy': minter.finish_policy
    })


def build_minter(app):
    config = app.config
    if config.get('LINK_TOKEN_ADDRESS'):
        # On chain: randomness must come from a real coordinator that spends the fee
        if not config.get('VRF_COORDINATOR'):
            raise RuntimeError('LINK_TOKEN_ADDRESS is set but no VRF_COORDINATOR was configured')
        link_balance = Web3LinkBalance(config['WEB3_RPC_URL'], config['LINK_TOKEN_ADDRESS'])
        coordinator = config['VRF_COORDINATOR']
    else:
        # Local development: LINK lives in memory and the coordinator runs in-process
        link_balance = LinkLedger({config['MINTER_ADDRESS']: config['LINK_DEV_BALANCE']})
        coordinator = config.get('VRF_COORDINATOR') or VRFCoordinator(ledger=link_balance)

    minter = RoseMinter(
        coordinator=coordinator,
        link_balance=link_balance,
        address=config['MINTER_ADDRESS'],
        key_hash=config['VRF_KEY_HASH'],
        fee=config['VRF_FEE'],
        finish_policy=config['FINISH_MINT_POLICY'],
        background=config['ROSE_BACKGROUND']
    )

    def on_randomness(request_id, randomness):
        if has_app_context():
            return minter.on_randomness_received(request_id, randomness)
        with app.app_context():
            return minter.on_randomness_received(request_id, randomness)

    if isinstance(coordinator, VRFCoordinator):
        coordinator.register_consumer(minter.address, on_randomness)
    return minter


def create_app(test_config=None):
    app = Flask(__name__, instance_relative_config=True)

    # Configure SQLAlchemy
    db_path = os.path.join(app.instance_path, 'rosemint.db')
    app.config['SQLALCHEMY_DATABASE_URI'] = os.getenv('DATABASE_URL', f'sqlite:///{db_path}')
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

    # Configure minting
    app.config['WEB3_RPC_URL'] = os.getenv('WEB3_RPC_URL', AVALANCHE_TESTNET_RPC)
    app.config['LINK_TOKEN_ADDRESS'] = os.getenv('LINK_TOKEN_ADDRESS')
    app.config['MINTER_ADDRESS'] = os.getenv('MINTER_ADDRESS', MINTER_ADDRESS)
    app.config['VRF_KEY_HASH'] = os.getenv('VRF_KEY_HASH', VRF_KEY_HASH)
    app.config['VRF_FEE'] = int(os.getenv('VRF_FEE', VRF_FEE))
    app.config['VRF_COORDINATOR_SECRET'] = os.getenv('VRF_COORDINATOR_SECRET')
    app.config['LINK_DEV_BALANCE'] = int(os.getenv('LINK_DEV_BALANCE', 100 * VRF_FEE))
    app.config['FINISH_MINT_POLICY'] = os.getenv('FINISH_MINT_POLICY', FINISH_POLICY_OPEN)
    app.config['ROSE_BACKGROUND'] = os.getenv('ROSE_BACKGROUND', DEFAULT_BACKGROUND)

    if test_config is not None:
        app.config.update(test_config)

    if app.config['SQLALCHEMY_DATABASE_URI'].startswith(f'sqlite:///{app.instance_path}'):
        os.makedirs(app.instance_path, exist_ok=True)

    # Initialize database
    db.init_app(app)
    with app.app_context():
        db.create_all()

    app.extensions['rose_minter'] = build_minter(app)
    app.register_blueprint(bp)

    app.logger.info(f'Rose minter ready at {app.config["MINTER_ADDRESS"]}')
    return app


if __name__ == '__main__':
    app = create_app()
    # Use environment variables or default to production settings
    debug_mode = os.environ.get('FLASK_DEBUG', 'False').lower() == 'true'
    port = int(os.environ.get('PORT', 5000))
    app.run(host='0.0.0.0', port=port, debug=debug_mode)
