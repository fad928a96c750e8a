import threading
from datetime import datetime, timedelta
from flask import current_app
from web3 import Web3

from models import db, MintRequest, RoseRecord, MintCounter, MintEvent, RESERVED
from rose import RoseParams, generate_rose
from token_uri import build_token_uri

# Shape parameters every rose is drawn with
ROSE_PARAMS = RoseParams(samples=1000, scale=10 ** 16, petals=20, ratio=2, angle=60)
DEFAULT_BACKGROUND = '#0b0d17'

FINISH_POLICY_OPEN = 'open'
FINISH_POLICY_REQUESTER = 'requester'

# One lifecycle operation at a time, process-wide
_mint_lock = threading.RLock()


class MintError(Exception):
    status_code = 400

    @property
    def kind(self):
        return type(self).__name__


class InsufficientFee(MintError):
    status_code = 402


class UnknownRecord(MintError):
    status_code = 404


class AlreadyFinalized(MintError):
    status_code = 409


class SeedNotReady(MintError):
    status_code = 409


class NotRequester(MintError):
    status_code = 403


class RoseMinter:
    """
    Mint lifecycle for rose tokens: Reserved -> Seeded -> Finalized.

    request_mint reserves a token id and asks the coordinator for randomness,
    on_randomness_received binds owner and seed, finish_mint draws the rose
    and attaches its token URI. All state lives in the database and every
    operation commits or rolls back as a whole.
    """
    def __init__(self, coordinator, link_balance, address, key_hash, fee,
                 finish_policy=FINISH_POLICY_OPEN, background=DEFAULT_BACKGROUND):
        if finish_policy not in (FINISH_POLICY_OPEN, FINISH_POLICY_REQUESTER):
            raise ValueError(f'Unknown finish policy: {finish_policy}')
        self.coordinator = coordinator
        self.link_balance = link_balance
        self.address = Web3.to_checksum_address(address)
        self.key_hash = key_hash
        self.fee = int(fee)
        self.finish_policy = finish_policy
        self.background = background

    # --------------------
    # Lifecycle operations
    # --------------------
    def request_mint(self, caller):
        """
        Reserve the next token id for caller and request its random seed
        """
        caller = Web3.to_checksum_address(caller)
        with _mint_lock:
            try:
                balance = self.link_balance.balance_of(self.address)
                if balance < self.fee:
                    raise InsufficientFee(f'Not enough LINK: have {balance}, need {self.fee}')

                counter = self._counter()
                token_id = counter.next_token_id

                # user seed = token id: request ids never repeat, even after a restart
                request_id = self.coordinator.request_randomness(
                    self.address, self.key_hash, self.fee, user_seed=token_id)

                counter.next_token_id = token_id + 1
                db.session.add(RoseRecord(token_id=token_id))
                db.session.flush()
                db.session.add(MintRequest(request_id=request_id, requester=caller, token_id=token_id))
                self._emit('MintRequested', token_id, request_id=request_id)
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

        current_app.logger.info(f'Mint requested: token {token_id} for {caller}, request {request_id}')
        return request_id

    def on_randomness_received(self, request_id, random_value):
        """
        Coordinator callback. Returns True if the seed was stored.
        """
        random_value = int(random_value)
        with _mint_lock:
            try:
                request = db.session.get(MintRequest, request_id)
                if request is None:
                    current_app.logger.warning(f'Randomness for unknown request {request_id} ignored')
                    return False
                if random_value <= 0:
                    current_app.logger.warning(f'Non-positive randomness for request {request_id} ignored')
                    return False

                record = db.session.get(RoseRecord, request.token_id)
                if record.state != RESERVED:
                    current_app.logger.warning(
                        f'Duplicate randomness for token {record.token_id} ({record.state}) ignored')
                    return False

                # issue the token to its requester
                record.owner = request.requester
                record.random_seed = hex(random_value)
                record.seeded_at = datetime.utcnow()
                request.status = 'fulfilled'
                request.fulfilled_at = record.seeded_at
                self._emit('RandomNumberReceived', record.token_id,
                           request_id=request_id, random_value=str(random_value))
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

        current_app.logger.info(f'Random number received for token {record.token_id}')
        return True

    def finish_mint(self, token_id, palette, caller=None):
        """
        Draw the rose for a seeded token and attach its token URI
        """
        with _mint_lock:
            try:
                if token_id < 0 or token_id >= self.token_counter:
                    raise UnknownRecord(f'Token {token_id} does not exist')

                record = db.session.get(RoseRecord, token_id)
                if record.token_uri:
                    raise AlreadyFinalized(f'Token {token_id} is already finished')
                if not record.seed:
                    raise SeedNotReady(f'Random seed for token {token_id} has not arrived yet')
                if self.finish_policy == FINISH_POLICY_REQUESTER:
                    if caller is None or Web3.to_checksum_address(caller) != record.owner:
                        raise NotRequester(f'Only the owner of token {token_id} can finish it')

                rose_path = generate_rose(record.seed, palette, self.background, ROSE_PARAMS)
                token_uri = build_token_uri(rose_path, token_id)

                record.token_uri = token_uri
                record.finalized_at = datetime.utcnow()
                self._emit('RoseCreated', token_id, token_uri=token_uri)
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

        current_app.logger.info(f'Rose created for token {token_id}')
        return token_uri

    # -------
    # Queries
    # -------
    @property
    def token_counter(self):
        counter = db.session.get(MintCounter, 1)
        return counter.next_token_id if counter else 0

    def get_record(self, token_id):
        record = db.session.get(RoseRecord, token_id)
        if record is None:
            raise UnknownRecord(f'Token {token_id} does not exist')
        return record

    def get_request(self, request_id):
        return db.session.get(MintRequest, request_id)

    def record_state(self, token_id):
        return self.get_record(token_id).state

    def token_uri(self, token_id):
        return self.get_record(token_id).token_uri

    def owner_of(self, token_id):
        return self.get_record(token_id).owner

    def events(self, kind=None):
        query = MintEvent.query
        if kind:
            query = query.filter_by(kind=kind)
        return query.order_by(MintEvent.id).all()

    def stale_requests(self, older_than=timedelta(0)):
        """
        Requests still waiting for randomness after older_than
        """
        cutoff = datetime.utcnow() - older_than
        return (MintRequest.query
                .filter_by(status='pending')
                .filter(MintRequest.created_at <= cutoff)
                .order_by(MintRequest.token_id)
                .all())

    # -------
    # Helpers
    # -------
    def _counter(self):
        counter = db.session.get(MintCounter, 1)
        if counter is None:
            counter = MintCounter(id=1, next_token_id=0)
            db.session.add(counter)
        return counter

    def _emit(self, kind, token_id, **fields):
        db.session.add(MintEvent(kind=kind, token_id=token_id, **fields))

