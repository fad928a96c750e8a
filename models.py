from flask_sqlalchemy import SQLAlchemy
from datetime import datetime

db = SQLAlchemy()

RESERVED = 'reserved'
SEEDED = 'seeded'
FINALIZED = 'finalized'


class MintRequest(db.Model):
    __tablename__ = 'mint_requests'
    request_id = db.Column(db.String(66), primary_key=True)
    requester = db.Column(db.String(42), nullable=False)
    token_id = db.Column(db.Integer, db.ForeignKey('rose_records.token_id'), nullable=False, unique=True)
    status = db.Column(db.String(20), default='pending') # pending, fulfilled
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    fulfilled_at = db.Column(db.DateTime)

    def to_dict(self):
        return {
            'request_id': self.request_id,
            'requester': self.requester,
            'token_id': self.token_id,
            'status': self.status,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'fulfilled_at': self.fulfilled_at.isoformat() if self.fulfilled_at else None
        }


class RoseRecord(db.Model):
    __tablename__ = 'rose_records'
    token_id = db.Column(db.Integer, primary_key=True, autoincrement=False)
    owner = db.Column(db.String(42))
    random_seed = db.Column(db.String(66)) # 0x-prefixed hex, 256-bit
    token_uri = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    seeded_at = db.Column(db.DateTime)
    finalized_at = db.Column(db.DateTime)

    @property
    def seed(self):
        return int(self.random_seed, 16) if self.random_seed else 0

    @property
    def state(self):
        if self.token_uri:
            return FINALIZED
        if self.seed:
            return SEEDED
        return RESERVED

    def to_dict(self):
        return {
            'token_id': self.token_id,
            'owner': self.owner,
            'state': self.state,
            'random_seed': str(self.seed) if self.seed else None,
            'token_uri': self.token_uri
        }


class MintCounter(db.Model):
    __tablename__ = 'mint_counter'
    id = db.Column(db.Integer, primary_key=True)
    next_token_id = db.Column(db.Integer, nullable=False, default=0)


class MintEvent(db.Model):
    __tablename__ = 'mint_events'
    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(32), nullable=False) # MintRequested, RandomNumberReceived, RoseCreated
    token_id = db.Column(db.Integer, nullable=False)
    request_id = db.Column(db.String(66))
    random_value = db.Column(db.String(78))
    token_uri = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        data = {'kind': self.kind, 'token_id': self.token_id}
        if self.request_id:
            data['request_id'] = self.request_id
        if self.random_value:
            data['random_value'] = self.random_value
        if self.token_uri:
            data['token_uri'] = self.token_uri
        data['created_at'] = self.created_at.isoformat() if self.created_at else None
        return data
