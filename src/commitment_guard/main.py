"""
Commitment Guard - Main Entry Point

Watches Uniswap V3 price triggers for a commitment (a Safe controlled by an
Optimistic Governor module) and emits at most one validated swap action per
episode.

Usage:
    commitment-guard [--dry-run] [--once] [--state-path PATH]
    commitment-guard --reset-lock   # operator: delete the durable lock record

Environment Variables:
    RPC_URL                           JSON-RPC endpoint (required)
    COMMITMENT_SAFE                   Commitment account / swap recipient (required)
    OG_MODULE                         Optimistic Governor module (required)
    AGENT_ADDRESS                     Only count proposals from this proposer
    START_BLOCK                       First block of the ledger scan (default: 0)
    POLL_INTERVAL_MS                  Cycle interval (default: 10000)
    DRY_RUN                           "true" logs actions instead of submitting (default: true)
    LOG_LEVEL                         Logging level (default: INFO)
    PRICE_TRIGGERS_JSON               Static trigger list (JSON array)
    COMMITMENT_TEXT / COMMITMENT_FILE Commitment text (parsed, or inferred from)
    OPENAI_API_KEY / OPENAI_MODEL / OPENAI_BASE_URL
                                      Trigger inference collaborator
    UNISWAP_V3_FACTORY                Factory override
    UNISWAP_V3_QUOTER                 Quoter override (comma-separated list)
    UNISWAP_V3_FEE_TIERS              Fee tiers searched for high-liquidity pools
    SLIPPAGE_BPS                      Slippage budget (default: 50)
    TOKEN_ALLOWLIST                   Tradeable tokens (default: tokens of the triggers)
    FEE_TIER_ALLOWLIST                Allowed fee tiers (default: UNISWAP_V3_FEE_TIERS)
    ROUTER_ALLOWLIST                  Allowed routers (default: DEFAULT_ROUTER)
    DEFAULT_ROUTER                    Router used for default/pinned actions
    ROUTER_POLICY                     enforce | pin (default: enforce)
    AMOUNT_IN_MODE                    checked | full_balance (default: checked)
    SPEND_TOKEN                       Token sold by the default proposal
    EPISODE_MODE                      single_shot | repeatable (default: single_shot)
    LOG_CHUNK_SIZE                    Blocks per getLogs request (default: 50000)
    RECONCILE_CONFIRMATIONS           Blocks ignored below the head (default: 0)
    PROPOSAL_CONFIRM_TIMEOUT_SECONDS  Missing receipt tolerance (default: 60)
    RPC_TIMEOUT_SECONDS               Per-call RPC timeout (default: 10)
    LOCK_STATE_PATH                   JSON lock record path
    LOCK_DATABASE_URL                 Shared PostgreSQL lock store (overrides the file)

Submission:
    Signing, bonding and submitting proposals is an external collaborator.
    The CLI only runs dry; live use embeds GuardBot with a Submitter.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol

# Configure logging before imports
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

from commitment_guard.chain.addresses import (
    DEFAULT_FEE_TIERS,
    DEFAULT_SEPOLIA_ROUTER,
    SEPOLIA_CHAIN_ID,
    normalize_address,
    normalize_address_list,
)
from commitment_guard.chain.client import LedgerClient
from commitment_guard.core.engine import (
    CommitmentEngine,
    CycleResult,
    EngineConfig,
    TriggerSource,
    static_triggers,
)
from commitment_guard.core.trigger_evaluator import ChainMetadataCache, TriggerEvaluator
from commitment_guard.core.trigger_inference import TriggerInferenceClient
from commitment_guard.core.trigger_parser import (
    parse_commitment_triggers,
    parse_token_map,
)
from commitment_guard.core.triggers import Trigger, sanitize_triggers
from commitment_guard.execution.action_validator import (
    ActionValidator,
    AmountInMode,
    RouterPolicy,
    SwapAction,
    ValidatorPolicy,
)
from commitment_guard.execution.balance_manager import BalanceManager
from commitment_guard.execution.execution_guard import (
    EpisodeMode,
    ExecutionGuard,
    SubmissionReport,
)
from commitment_guard.execution.quote_resolver import QuoteResolver
from commitment_guard.execution.reconciler import LedgerReconciler
from commitment_guard.storage import (
    Database,
    DatabaseConfig,
    FileLockStore,
    LockStore,
    PostgresLockStore,
    episode_id_for,
)

DEFAULT_LOCK_STATE_PATH = "commitment-guard-lock.json"


class Submitter(Protocol):
    """External collaborator that signs, bonds and submits a proposal."""

    async def submit(self, action: SwapAction) -> SubmissionReport:
        ...


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() == "true"


def _env_list(name: str) -> list[str]:
    raw = os.environ.get(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_int_list(name: str, default: tuple[int, ...]) -> tuple[int, ...]:
    items = _env_list(name)
    return tuple(int(item) for item in items) if items else default


@dataclass
class BotConfig:
    """Complete guard configuration."""

    # Chain
    rpc_url: str = ""
    commitment_safe: str = ""
    og_module: str = ""
    agent_address: Optional[str] = None
    start_block: int = 0
    rpc_timeout_seconds: float = 10.0

    # Loop
    poll_interval_ms: int = 10_000
    dry_run: bool = True

    # Triggers
    price_triggers_json: Optional[str] = None
    commitment_text: str = ""
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4.1-mini"
    openai_base_url: str = "https://api.openai.com/v1"

    # Uniswap
    uniswap_v3_factory: Optional[str] = None
    uniswap_v3_quoters: list[str] = field(default_factory=list)
    fee_tiers: tuple[int, ...] = DEFAULT_FEE_TIERS
    slippage_bps: int = 50

    # Policy
    token_allowlist: list[str] = field(default_factory=list)
    fee_tier_allowlist: tuple[int, ...] = ()
    router_allowlist: list[str] = field(default_factory=list)
    default_router: Optional[str] = None
    router_policy: RouterPolicy = RouterPolicy.ENFORCE
    amount_in_mode: AmountInMode = AmountInMode.CHECKED
    spend_token: Optional[str] = None

    # Lock
    episode_mode: EpisodeMode = EpisodeMode.SINGLE_SHOT
    log_chunk_size: int = 50_000
    reconcile_confirmations: int = 0
    proposal_confirm_timeout_seconds: float = 60.0
    lock_state_path: str = DEFAULT_LOCK_STATE_PATH
    lock_database_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "BotConfig":
        """Load configuration from environment variables."""
        commitment_text = os.environ.get("COMMITMENT_TEXT", "")
        commitment_file = os.environ.get("COMMITMENT_FILE")
        if not commitment_text and commitment_file:
            commitment_text = Path(commitment_file).read_text(encoding="utf-8")

        fee_tiers = _env_int_list("UNISWAP_V3_FEE_TIERS", DEFAULT_FEE_TIERS)

        return cls(
            rpc_url=os.environ.get("RPC_URL", ""),
            commitment_safe=os.environ.get("COMMITMENT_SAFE", ""),
            og_module=os.environ.get("OG_MODULE", ""),
            agent_address=os.environ.get("AGENT_ADDRESS") or None,
            start_block=int(os.environ.get("START_BLOCK", "0")),
            rpc_timeout_seconds=float(os.environ.get("RPC_TIMEOUT_SECONDS", "10")),
            poll_interval_ms=int(os.environ.get("POLL_INTERVAL_MS", "10000")),
            dry_run=_env_bool("DRY_RUN", "true"),
            price_triggers_json=os.environ.get("PRICE_TRIGGERS_JSON") or None,
            commitment_text=commitment_text,
            openai_api_key=os.environ.get("OPENAI_API_KEY") or None,
            openai_model=os.environ.get("OPENAI_MODEL", "gpt-4.1-mini"),
            openai_base_url=os.environ.get("OPENAI_BASE_URL", "https://api.openai.com/v1"),
            uniswap_v3_factory=os.environ.get("UNISWAP_V3_FACTORY") or None,
            uniswap_v3_quoters=_env_list("UNISWAP_V3_QUOTER"),
            fee_tiers=fee_tiers,
            slippage_bps=int(os.environ.get("SLIPPAGE_BPS", "50")),
            token_allowlist=_env_list("TOKEN_ALLOWLIST"),
            fee_tier_allowlist=_env_int_list("FEE_TIER_ALLOWLIST", fee_tiers),
            router_allowlist=_env_list("ROUTER_ALLOWLIST"),
            default_router=os.environ.get("DEFAULT_ROUTER") or None,
            router_policy=RouterPolicy(os.environ.get("ROUTER_POLICY", "enforce").lower()),
            amount_in_mode=AmountInMode(os.environ.get("AMOUNT_IN_MODE", "checked").lower()),
            spend_token=os.environ.get("SPEND_TOKEN") or None,
            episode_mode=EpisodeMode(os.environ.get("EPISODE_MODE", "single_shot").lower()),
            log_chunk_size=int(os.environ.get("LOG_CHUNK_SIZE", "50000")),
            reconcile_confirmations=int(os.environ.get("RECONCILE_CONFIRMATIONS", "0")),
            proposal_confirm_timeout_seconds=float(
                os.environ.get("PROPOSAL_CONFIRM_TIMEOUT_SECONDS", "60")
            ),
            lock_state_path=os.environ.get("LOCK_STATE_PATH", DEFAULT_LOCK_STATE_PATH),
            lock_database_url=os.environ.get("LOCK_DATABASE_URL") or None,
        )

    def missing_required(self) -> list[str]:
        required = {
            "RPC_URL": self.rpc_url,
            "COMMITMENT_SAFE": self.commitment_safe,
            "OG_MODULE": self.og_module,
        }
        return [name for name, value in required.items() if not value]


def load_static_triggers(config: BotConfig) -> Optional[list[Trigger]]:
    """
    Triggers known without calling the inference collaborator.

    Returns:
        Sanitized triggers from PRICE_TRIGGERS_JSON or the commitment text,
        or None when neither yields any
    """
    if config.price_triggers_json:
        raw = json.loads(config.price_triggers_json)
        if not isinstance(raw, list):
            raise ValueError("PRICE_TRIGGERS_JSON must be a JSON array")
        return sanitize_triggers(raw)

    parsed = parse_commitment_triggers(config.commitment_text)
    return parsed or None


def default_token_allowlist(config: BotConfig, triggers: Optional[list[Trigger]]) -> list[str]:
    if config.token_allowlist:
        return config.token_allowlist
    tokens: set[str] = set(parse_token_map(config.commitment_text or "").values())
    for trigger in triggers or []:
        tokens.update((trigger.base_token, trigger.quote_token))
    return sorted(normalize_address_list(tokens))


class GuardBot:
    """
    Guard lifecycle: components, periodic cycle loop, shutdown.

    Usage:
        bot = GuardBot(BotConfig.from_env(), submitter=my_submitter)
        await bot.start()
    """

    def __init__(self, config: BotConfig, submitter: Optional[Submitter] = None):
        self.config = config
        self._submitter = submitter
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized on start)
        self._ledger: Optional[LedgerClient] = None
        self._db: Optional[Database] = None
        self._store: Optional[LockStore] = None
        self._engine: Optional[CommitmentEngine] = None

    @property
    def engine(self) -> Optional[CommitmentEngine]:
        return self._engine

    async def _init_store(self) -> LockStore:
        if self.config.lock_database_url:
            self._db = Database(DatabaseConfig(url=self.config.lock_database_url))
            await self._db.initialize()
            store = PostgresLockStore(
                self._db, episode_id_for(self.config.commitment_text, self.config.og_module)
            )
            await store.ensure_schema()
            logger.info(f"Lock record stored in PostgreSQL (episode {store.episode_id})")
            return store

        logger.info(f"Lock record stored at {self.config.lock_state_path}")
        return FileLockStore(self.config.lock_state_path)

    def _build_trigger_source(self, triggers: Optional[list[Trigger]]) -> TriggerSource:
        if triggers is not None:
            logger.info(f"Loaded {len(triggers)} price trigger(s): {[t.id for t in triggers]}")
            return static_triggers(triggers)

        if self.config.commitment_text and self.config.openai_api_key:
            client = TriggerInferenceClient(
                api_key=self.config.openai_api_key,
                model=self.config.openai_model,
                base_url=self.config.openai_base_url,
            )
            text = self.config.commitment_text
            logger.info("Price triggers will be inferred from the commitment text")

            async def _inferred() -> list[Trigger]:
                return await client.infer(text)

            return _inferred

        logger.warning("No price triggers configured; the guard will stay idle")
        return static_triggers([])

    async def _init_engine(self) -> None:
        config = self.config
        self._ledger = LedgerClient(config.rpc_url, timeout=config.rpc_timeout_seconds)
        self._store = await self._init_store()

        default_router = config.default_router
        if default_router is None:
            chain_id = await self._ledger.get_chain_id()
            if chain_id == SEPOLIA_CHAIN_ID:
                default_router = DEFAULT_SEPOLIA_ROUTER

        triggers = load_static_triggers(config)
        policy = ValidatorPolicy(
            commitment_account=config.commitment_safe,
            token_allowlist=default_token_allowlist(config, triggers),
            fee_tier_allowlist=config.fee_tier_allowlist or config.fee_tiers,
            router_allowlist=config.router_allowlist or ([default_router] if default_router else []),
            default_router=default_router,
            router_policy=config.router_policy,
            amount_in_mode=config.amount_in_mode,
        )

        guard = ExecutionGuard(self._store, episode_mode=config.episode_mode)
        self._engine = CommitmentEngine(
            config=EngineConfig(
                spend_token=normalize_address(config.spend_token) if config.spend_token else None
            ),
            trigger_source=self._build_trigger_source(triggers),
            evaluator=TriggerEvaluator(
                self._ledger,
                fee_tiers=config.fee_tiers,
                factory=config.uniswap_v3_factory,
                cache=ChainMetadataCache(),
            ),
            guard=guard,
            quote_resolver=QuoteResolver(
                self._ledger,
                slippage_bps=config.slippage_bps,
                quoter_override=config.uniswap_v3_quoters or None,
            ),
            validator=ActionValidator(policy, guard=guard),
            balances=BalanceManager(self._ledger, config.commitment_safe),
            reconciler=LedgerReconciler(
                self._ledger,
                config.og_module,
                start_block=config.start_block,
                chunk_size=config.log_chunk_size,
                confirmations=config.reconcile_confirmations,
                proposer=config.agent_address,
                confirm_timeout_seconds=config.proposal_confirm_timeout_seconds,
            ),
        )
        await self._engine.start()

    async def start(self, once: bool = False) -> None:
        """
        Start the guard and run cycles until shutdown.

        Args:
            once: Run a single cycle and return
        """
        logger.info("=" * 60)
        logger.info("COMMITMENT GUARD")
        logger.info("=" * 60)
        logger.info(f"Commitment: {self.config.commitment_safe} (module {self.config.og_module})")
        logger.info(f"Submission: {'DRY RUN' if self.config.dry_run else 'LIVE'}")
        logger.info(f"Episode: {self.config.episode_mode.value}")
        logger.info("=" * 60)

        self._running = True
        self._shutdown_event.clear()
        self._setup_signal_handlers()

        try:
            await self._init_engine()
            if once:
                await self.run_once()
            else:
                await self._run_loop()
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop the guard and release connections."""
        if not self._running:
            return

        logger.info("Shutting down...")
        self._running = False
        self._shutdown_event.set()

        if self._ledger:
            await self._ledger.close()
        if self._db:
            await self._db.close()

        if self._engine:
            stats = self._engine.stats
            logger.info(
                f"Stats: cycles={stats.cycles}, emitted={stats.triggers_emitted}, "
                f"actions={stats.actions_emitted}, rejections={stats.rejections}"
            )
        logger.info("Shutdown complete")

    async def run_once(self) -> Optional[CycleResult]:
        """Run one cycle and hand an emitted action to the submitter."""
        if self._engine is None:
            raise RuntimeError("Guard not started")

        result = await self._engine.run_cycle()
        if result.action is None:
            return result

        if self.config.dry_run or self._submitter is None:
            logger.info(f"[DRY RUN] Would submit: {json.dumps(result.action.to_dict())}")
            return result

        report = await self._submitter.submit(result.action)
        state = await self._engine.report_submission(report)
        logger.info(f"Submission {report.outcome.value}; lock state={state.value}")
        return result

    async def _run_loop(self) -> None:
        interval = self.config.poll_interval_ms / 1000

        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Unexpected error in cycle: {e}")

            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=interval)
                break  # Shutdown requested
            except asyncio.TimeoutError:
                pass

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def handle_signal(sig):
            logger.info(f"Received signal {sig}")
            self._running = False
            self._shutdown_event.set()

        try:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    async def reset_lock(self) -> None:
        """Operator action: delete the durable lock record."""
        self._store = await self._init_store()
        try:
            await ExecutionGuard(self._store).reset()
        finally:
            if self._db:
                await self._db.close()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Commitment execution guard",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log emitted actions instead of submitting them",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single cycle and exit",
    )
    parser.add_argument(
        "--reset-lock",
        action="store_true",
        help="Delete the durable lock record and exit",
    )
    parser.add_argument(
        "--state-path",
        type=str,
        help="Override LOCK_STATE_PATH",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override log level",
    )
    return parser.parse_args(argv)


async def main_async(args: argparse.Namespace) -> int:
    """Async main function."""
    try:
        config = BotConfig.from_env()
    except (OSError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    if args.dry_run:
        config.dry_run = True
    if args.state_path:
        config.lock_state_path = args.state_path

    bot = GuardBot(config)

    if args.reset_lock:
        await bot.reset_lock()
        return 0

    missing = config.missing_required()
    if missing:
        logger.error(f"Missing required environment variables: {', '.join(missing)}")
        return 1

    if not config.dry_run:
        logger.error("Live submission needs a Submitter; embed GuardBot or set DRY_RUN=true")
        return 1

    try:
        await bot.start(once=args.once)
        return 0
    except KeyboardInterrupt:
        logger.info("Shutdown requested")
        return 0
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    if args.log_level:
        logging.getLogger().setLevel(getattr(logging, args.log_level))

    try:
        return asyncio.run(main_async(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
