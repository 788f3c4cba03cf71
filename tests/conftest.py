"""Shared test fixtures."""

from __future__ import annotations

import os
import secrets
import threading
from collections.abc import AsyncGenerator, Awaitable, Callable, Iterator
from dataclasses import dataclass, replace

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from web3 import Web3

os.environ.setdefault("PROVELT_LOG_FORMAT", "console")
os.environ.setdefault("PROVELT_ENVIRONMENT", "test")

from provelt.chain.config import ChainConfig  # noqa: E402
from provelt.chain.dispatch import SignerDispatcher  # noqa: E402
from provelt.chain.gateway import BadgeInfo, MintReceipt  # noqa: E402
from provelt.config import get_settings  # noqa: E402
from provelt.database import close_db, get_engine, get_session_factory, init_db  # noqa: E402
from provelt.db.base import Base  # noqa: E402
from provelt.db.models import Challenge, Profile, Submission  # noqa: E402
from provelt.errors import TransactionReverted  # noqa: E402
from provelt.records import Difficulty  # noqa: E402
from provelt.review.issuance import IssuanceCoordinator  # noqa: E402
from provelt.review.reviewer import SubmissionReviewer  # noqa: E402
from provelt.staking.accrual import RateTable, StakePosition, StakingAccrualEngine  # noqa: E402

get_settings.cache_clear()

USER_WALLET = "0x" + "ab12" * 10
OTHER_WALLET = "0x" + "cd34" * 10
BADGE_CONTRACT = "0x" + "b" * 40
STAKING_CONTRACT = "0x" + "5" * 40
REWARD_TOKEN = "0x" + "7" * 40
TREASURY_KEY = "0x" + "11" * 32
START_TIME = 1_700_000_000


class FakeClock:
    """Settable unix-seconds clock shared by the fake contracts and the engine."""

    def __init__(self, now: int = START_TIME) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


class FakeChainGateway:
    """In-memory badge, staking and reward-token contracts behind the ChainGateway surface."""

    def __init__(self, config: ChainConfig, clock: FakeClock, signer: str = USER_WALLET) -> None:
        self.config = config
        self.clock = clock
        self.signer = signer
        self.rates = RateTable()
        self.deployed = True
        self.fail_with: Exception | None = None
        # Set `hold` to keep a mint in flight until the test releases it.
        self.hold: threading.Event | None = None
        self.mint_started = threading.Event()
        self.mint_calls: list[tuple[str, int, bytes, str]] = []
        self.owners: dict[int, str] = {}
        self.badges: dict[int, BadgeInfo] = {}
        self.stakes: dict[int, StakePosition] = {}
        self.balances: dict[str, int] = {}
        self._next_token = 1
        self._lock = threading.Lock()

    @property
    def signer_address(self) -> str:
        return self.signer

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    @staticmethod
    def _tx() -> str:
        return "0x" + secrets.token_hex(32)

    # --- badge contract ---

    def mint_badge(self, to: str, challenge_id_hash: int, proof_hash: bytes, metadata_uri: str) -> MintReceipt:
        self._check()
        self.mint_started.set()
        if self.hold is not None:
            self.hold.wait(10)
        with self._lock:
            token_id = self._next_token
            self._next_token += 1
            self.owners[token_id] = to
            self.badges[token_id] = BadgeInfo(
                challenge_id=challenge_id_hash,
                completed_at=self.clock(),
                proof_hash=Web3.to_hex(proof_hash),
            )
            self.mint_calls.append((to, challenge_id_hash, bytes(proof_hash), metadata_uri))
        return MintReceipt(tx_hash=self._tx(), token_id=str(token_id))

    def give(self, owner: str, *token_ids: int) -> None:
        for token_id in token_ids:
            self.owners[token_id] = owner
            self._next_token = max(self._next_token, token_id + 1)

    def get_badges_of(self, owner: str) -> list[int]:
        self._check()
        return sorted(t for t, o in self.owners.items() if o.lower() == owner.lower())

    def has_challenge_badge(self, owner: str, challenge_id_hash: int) -> bool:
        self._check()
        return any(
            self.badges[t].challenge_id == challenge_id_hash for t in self.get_badges_of(owner) if t in self.badges
        )

    def get_badge_info(self, token_id: int) -> BadgeInfo:
        self._check()
        return self.badges[token_id]

    def owner_of(self, token_id: int) -> str:
        self._check()
        return self.owners[token_id]

    def is_deployed(self, address: str) -> bool:
        return self.deployed

    # --- staking contract ---

    def _pay(self, position: StakePosition) -> int:
        amount = position.pending(self.rates, self.clock())
        key = position.owner.lower()
        self.balances[key] = self.balances.get(key, 0) + amount
        return amount

    def stake(self, token_id: int, tier: Difficulty) -> str:
        self._check()
        if self.owners.get(token_id, "").lower() != self.signer.lower():
            raise TransactionReverted("stake reverted: not owner")
        now = self.clock()
        self.owners[token_id] = self.config.staking_contract_address
        self.stakes[token_id] = StakePosition(token_id, self.signer, now, now, tier)
        return self._tx()

    def unstake(self, token_id: int) -> str:
        self._check()
        position = self.stakes.pop(token_id)
        self._pay(position)
        self.owners[token_id] = position.owner
        return self._tx()

    def claim_rewards(self, token_id: int) -> str:
        self._check()
        position = self.stakes[token_id]
        self._pay(position)
        self.stakes[token_id] = replace(position, last_claim_at=self.clock())
        return self._tx()

    def claim_all_rewards(self) -> str:
        self._check()
        for token_id in self.get_staked_tokens(self.signer):
            self.claim_rewards(token_id)
        return self._tx()

    def pending_rewards(self, token_id: int) -> int:
        return self.stakes[token_id].pending(self.rates, self.clock())

    def total_pending_rewards(self, owner: str) -> int:
        return sum(self.pending_rewards(t) for t in self.get_staked_tokens(owner))

    def get_staked_tokens(self, owner: str) -> list[int]:
        self._check()
        return sorted(t for t, p in self.stakes.items() if p.owner.lower() == owner.lower())

    def get_stake(self, token_id: int) -> StakePosition | None:
        return self.stakes.get(token_id)

    def reward_balance(self, owner: str) -> int:
        return self.balances.get(owner.lower(), 0)


@dataclass(frozen=True)
class Seeded:
    profile_id: str
    challenge_id: str
    submission_id: str
    wallet: str
    points: int


# ---------------------------------------------------------------------------
# Chain
# ---------------------------------------------------------------------------


@pytest.fixture
def chain_config() -> ChainConfig:
    return ChainConfig(
        rpc_url="https://rpc.sepolia.mantle.xyz",
        chain_id=5003,
        explorer_url="https://sepolia.mantlescan.xyz",
        badge_contract_address=BADGE_CONTRACT,
        staking_contract_address=STAKING_CONTRACT,
        reward_token_address=REWARD_TOKEN,
        signer_private_key=TREASURY_KEY,
    )


@pytest.fixture
def unconfigured_chain_config() -> ChainConfig:
    return ChainConfig(rpc_url="https://rpc.sepolia.mantle.xyz", chain_id=5003)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_gateway(chain_config: ChainConfig, clock: FakeClock) -> FakeChainGateway:
    return FakeChainGateway(chain_config, clock)


@pytest.fixture
def queue() -> Iterator[SignerDispatcher]:
    dispatcher = SignerDispatcher()
    yield dispatcher
    dispatcher.shutdown()


@pytest.fixture
def coordinator(chain_config: ChainConfig, fake_gateway: FakeChainGateway, queue: SignerDispatcher) -> IssuanceCoordinator:
    return IssuanceCoordinator(
        chain_config,
        gateway=fake_gateway,  # type: ignore[arg-type]
        timeout=5,
        default_image_url="https://provelt.app/badge-default.png",
        queue=queue,
    )


@pytest.fixture
def reviewer(coordinator: IssuanceCoordinator) -> SubmissionReviewer:
    return SubmissionReviewer(coordinator)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite so concurrent sessions get separate connections."""
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'provelt.db'}")
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await close_db()


@pytest_asyncio.fixture
async def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return get_session_factory()


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def make_submission(
    db_session: AsyncSession,
) -> Callable[..., Awaitable[str]]:
    async def _make(submission_id: str, user_id: str, challenge_id: str = "challenge-1", status: str = "pending") -> str:
        db_session.add(
            Submission(
                id=submission_id,
                user_id=user_id,
                challenge_id=challenge_id,
                status=status,
                proof_media_url=f"https://media.provelt.app/{submission_id}.jpg",
            )
        )
        await db_session.commit()
        return submission_id

    return _make


@pytest_asyncio.fixture
async def seeded(db_session: AsyncSession, make_submission: Callable[..., Awaitable[str]]) -> Seeded:
    """One profile with a wallet, one medium challenge worth 50 points, one pending submission."""
    db_session.add(Profile(id="profile-1", username="alice", wallet_address=USER_WALLET))
    db_session.add(
        Challenge(
            id="challenge-1",
            title="Sunrise Run",
            description="Run 5km before 7am",
            category="fitness",
            difficulty="medium",
            points=50,
            badge_image_url="https://media.provelt.app/badges/sunrise.png",
        )
    )
    await db_session.commit()
    await make_submission("submission-1", "profile-1")
    return Seeded(
        profile_id="profile-1",
        challenge_id="challenge-1",
        submission_id="submission-1",
        wallet=USER_WALLET,
        points=50,
    )


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(
    db_engine: AsyncEngine,
    reviewer: SubmissionReviewer,
    fake_gateway: FakeChainGateway,
    clock: FakeClock,
    queue: SignerDispatcher,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with the chain replaced by in-memory contracts."""
    from provelt.dependencies import get_reviewer, get_staking_client
    from provelt.main import create_app
    from provelt.staking.client import StakingClient

    app = create_app()
    app.dependency_overrides[get_reviewer] = lambda: reviewer
    app.dependency_overrides[get_staking_client] = lambda: StakingClient(
        fake_gateway,  # type: ignore[arg-type]
        StakingAccrualEngine(clock=clock),
        timeout=5,
        queue=queue,
    )

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
