import secrets
from datetime import datetime
from web3 import Web3

# Minimal ERC-20 ABI, only what the fee check needs
LinkTokenABI = [
    {
        "constant": True,
        "inputs": [
            {
                "name": "owner",
                "type": "address"
            }
        ],
        "name": "balanceOf",
        "outputs": [
            {
                "name": "",
                "type": "uint256"
            }
        ],
        "stateMutability": "view",
        "type": "function"
    }
]

DEFAULT_COORDINATOR_ADDRESS = "0xb3dCcb4Cf7a26f6cf6B120Cf5A73875B7BBc655B"


class LinkLedger:
    """
    In-memory LINK balances for local runs and tests
    """
    def __init__(self, balances=None):
        self.balances = {}
        for holder, amount in (balances or {}).items():
            self.credit(holder, amount)

    def balance_of(self, holder):
        return self.balances.get(Web3.to_checksum_address(holder), 0)

    def credit(self, holder, amount):
        holder = Web3.to_checksum_address(holder)
        self.balances[holder] = self.balances.get(holder, 0) + int(amount)

    def transfer(self, sender, recipient, amount):
        if self.balance_of(sender) < amount:
            raise ValueError('Insufficient LINK balance')
        self.credit(sender, -amount)
        self.credit(recipient, amount)


class Web3LinkBalance:
    """
    Reads the LINK balance of an address from the token contract on chain
    """
    def __init__(self, rpc_url, token_address):
        self.web3 = Web3(Web3.HTTPProvider(rpc_url))
        self.token = self.web3.eth.contract(
            address=Web3.to_checksum_address(token_address),
            abi=LinkTokenABI
        )

    def balance_of(self, holder):
        return self.token.functions.balanceOf(Web3.to_checksum_address(holder)).call()


class VRFCoordinator:
    """
    In-process stand-in for the external randomness coordinator.

    Each accepted request is answered exactly once by calling back the
    consumer that registered for it.
    """
    def __init__(self, ledger=None, address=DEFAULT_COORDINATOR_ADDRESS):
        self.requests = {}
        self.consumers = {}
        self.nonces = {}
        self.ledger = ledger
        self.address = Web3.to_checksum_address(address)

    def register_consumer(self, consumer, callback):
        self.consumers[Web3.to_checksum_address(consumer)] = callback

    def request_randomness(self, consumer, key_hash, fee, user_seed=0):
        """
        Accept a randomness request and return its request id.

        user_seed is supplied by the consumer from its own persisted state,
        so ids stay unique when this process restarts and nonces start over.
        """
        consumer = Web3.to_checksum_address(consumer)
        if consumer not in self.consumers:
            raise ValueError(f'Consumer not registered: {consumer}')

        nonce = self.nonces.get(consumer, 0)
        # request id = keccak256(keyHash ++ consumer ++ userSeed ++ nonce)
        request_id = Web3.to_hex(Web3.keccak(
            Web3.to_bytes(hexstr=key_hash)
            + Web3.to_bytes(hexstr=consumer)
            + int(user_seed).to_bytes(32, 'big')
            + nonce.to_bytes(32, 'big')
        ))
        if request_id in self.requests:
            raise ValueError(f'Duplicate request: {request_id}')

        if self.ledger is not None:
            self.ledger.transfer(consumer, self.address, fee)
        self.nonces[consumer] = nonce + 1

        self.requests[request_id] = {
            'status': 'pending',
            'consumer': consumer,
            'key_hash': key_hash,
            'user_seed': user_seed,
            'fee': fee,
            'created_at': datetime.utcnow(),
            'randomness': None
        }
        return request_id

    def fulfill(self, request_id, randomness=None):
        """
        Deliver randomness for a pending request to its consumer
        """
        if request_id not in self.requests:
            raise KeyError(f'Unknown request: {request_id}')

        request = self.requests[request_id]
        if request['status'] != 'pending':
            raise ValueError(f'Request already fulfilled: {request_id}')

        if randomness is None:
            randomness = secrets.randbits(256) or 1

        callback = self.consumers[request['consumer']]
        callback(request_id, randomness)

        request['status'] = 'fulfilled'
        request['randomness'] = randomness
        request['fulfilled_at'] = datetime.utcnow()
        return randomness

    def get_request_status(self, request_id):
        """
        Get status of a randomness request by its id
        """
        if request_id not in self.requests:
            return {'error': 'Request not found'}

        request_data = self.requests[request_id].copy()

        # Convert datetime to string for JSON
        if 'created_at' in request_data:
            request_data['created_at'] = request_data['created_at'].isoformat()
        if 'fulfilled_at' in request_data:
            request_data['fulfilled_at'] = request_data['fulfilled_at'].isoformat()
        if request_data['randomness'] is not None:
            request_data['randomness'] = str(request_data['randomness'])

        return request_data
