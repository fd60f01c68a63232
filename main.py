# main.py
#
# Rekomendr.AI backend (soft-walled recommendations + usage accounting)
#
# ONLINE LOGIC:
# - Every visitor carries an opaque `rex_id` cookie; counts are kept per id per UTC day
# - A chain (base query + up to 3 refines) costs one search; per-query searches cost one each
# - The daily cap comes from tier + beta unlocks; paid is unlimited
# - Quota state lives in this process only and fails closed on any store error
# - OpenAI answers with exactly five cards; analytics rows go to Supabase in the background
#
# If OpenAI or Supabase is not configured → the affected routes answer 503.
#
from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from rekomendr import __version__
from rekomendr.admin import AdminReports
from rekomendr.chains import ChainLedger, InvalidChainId, check_chain_id
from rekomendr.content import pick_nudge, seeds_for
from rekomendr.identity import IdentityResolver
from rekomendr.models import (
    BetaIn,
    BetaUnlockRequest,
    ChainBeginRequest,
    ChainRef,
    FeedbackRequest,
    HealthResponse,
    NudgeRequest,
    QuotaActionRequest,
    RecsRequest,
    SurveyRequest,
    TrackRequest,
)
from rekomendr.policy import BetaFlagPolicy, BetaFlags, NamedTierPolicy, Tier
from rekomendr.quota import QuotaStore, QuotaStoreError, default_store, utc_now
from rekomendr.recommender import BadModelOutput, Recommender, RecommenderUnavailable
from rekomendr.settings import Settings
from rekomendr.softwall import SoftWall
from rekomendr.supabase import SupabaseSink, SupabaseUnavailable


logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger("rekomendr.api")

_EMAIL_RE = re.compile(r"^\S+@\S+\.\S+$")


# ---------- Request helpers ----------
def parse_tier(value: Optional[str]) -> Tier:
    """Missing → guest. A value that names no tier is a client error."""
    if value is None or not str(value).strip():
        return Tier.GUEST
    t = str(value).strip().lower()
    if t not in {x.value for x in Tier}:
        raise HTTPException(status_code=400, detail=f"Unknown tier: {value!r}")
    return Tier(t)


def beta_from_body(beta: Optional[BetaIn]) -> BetaFlags:
    if beta is None:
        return BetaFlags()
    return BetaFlags(beta1=beta.beta1, beta2=beta.beta2)


def beta_from_headers(request: Request) -> BetaFlags:
    return BetaFlags(
        beta1=request.headers.get("x-rex-beta1") == "1",
        beta2=request.headers.get("x-rex-beta2") == "1",
    )


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[QuotaStore] = None,
    recommender: Optional[Recommender] = None,
    sink: Optional[SupabaseSink] = None,
    clock: Callable[[], datetime] = utc_now,
) -> FastAPI:
    settings = settings or Settings.from_env()
    store = store if store is not None else default_store()
    recommender = recommender or Recommender(api_key=settings.openai_api_key, model=settings.model)
    sink = sink or SupabaseSink(settings.supabase_url, settings.supabase_key)

    identity = IdentityResolver(settings.cookie_name, settings.cookie_max_age_days)
    ledger = ChainLedger(store, BetaFlagPolicy(), clock=clock, charge_at=settings.chain_charge)
    quota_wall = ledger.wall
    search_wall = SoftWall(store, NamedTierPolicy(), clock=clock)
    reports = AdminReports(sink, settings.admin_window_days)

    app = FastAPI(title="Rekomendr.AI", version=__version__)
    app.state.settings = settings
    app.state.store = store
    app.state.ledger = ledger

    def client_of(request: Request, response: Response) -> str:
        return identity.bind(request.headers.get("cookie"), response)

    def effective_beta(client_id: str, flags: BetaFlags) -> BetaFlags:
        try:
            return flags.merged(store.beta_flags(client_id))
        except QuotaStoreError as e:
            logger.warning("beta grants unreadable for %s: %r", client_id, e)
            return flags

    def stamp() -> str:
        return clock().isoformat()

    @app.exception_handler(RequestValidationError)
    async def bad_request(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"ok": False, "error": "Bad Request"})

    # ---------- Health ----------
    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        status = "healthy"
        if not settings.has_openai:
            status += "-no-openai"
        if not settings.has_supabase:
            status += "-no-supabase"
        return HealthResponse(
            ok=True,
            status=status,
            version=__version__,
            model=settings.model,
            hasOpenAI=settings.has_openai,
            hasSupabase=settings.has_supabase,
            cap=settings.global_daily_cap,
        )

    @app.get("/api/envcheck")
    def envcheck() -> Dict[str, str]:
        return settings.envcheck()

    # ---------- Quota ----------
    @app.get("/api/quota")
    def quota_usage(request: Request, response: Response) -> Dict[str, Any]:
        client_id = client_of(request, response)
        tier = parse_tier(request.headers.get("x-rex-tier"))
        beta = effective_beta(client_id, beta_from_headers(request))
        usage = quota_wall.usage(client_id, tier, beta)
        return {"ok": True, "usage": usage.to_dict(), "tier": tier.value, "beta": vars(beta)}

    @app.post("/api/quota")
    def quota_action(body: QuotaActionRequest, request: Request, response: Response) -> Dict[str, Any]:
        client_id = client_of(request, response)
        tier = parse_tier(body.tier)
        beta = effective_beta(client_id, beta_from_body(body.beta))

        if body.action == "start":
            return {"ok": True, "chainId": ledger.start_chain()}

        if body.action == "end":
            if not body.chainId:
                raise HTTPException(status_code=400, detail="Missing chainId")
            try:
                result = ledger.end_chain_and_count(client_id, body.chainId, tier, beta)
            except InvalidChainId as e:
                raise HTTPException(status_code=400, detail=str(e))
            return {"ok": True, "result": result.to_dict()}

        if body.action == "reset":
            if not settings.dev_tools:
                raise HTTPException(status_code=403, detail="Dev tools disabled")
            store.reset_day(client_id, quota_wall.today())
            return {"ok": True}

        raise HTTPException(status_code=400, detail="Unknown action")

    # ---------- Chains ----------
    @app.get("/api/chain")
    def chain_get(request: Request, response: Response) -> Dict[str, Any]:
        client_id = client_of(request, response)
        chain = ledger.active_chain(client_id)
        return {"ok": True, "chain": chain.model_dump(by_alias=True) if chain else None}

    @app.post("/api/chain/begin")
    def chain_begin(body: ChainBeginRequest, request: Request, response: Response) -> Dict[str, Any]:
        client_id = client_of(request, response)
        tier = parse_tier(body.tier)
        beta = effective_beta(client_id, beta_from_body(body.beta))
        try:
            started = ledger.enter_chain(
                client_id,
                tier=tier,
                flags=beta,
                vertical=body.vertical,
                base_query=body.baseQuery,
                chain_id=body.chainId,
            )
        except InvalidChainId as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {
            "ok": True,
            "gate": started.gate.to_dict(),
            "chain": started.chain.model_dump(by_alias=True) if started.chain else None,
        }

    @app.post("/api/chain/refine")
    def chain_refine(body: ChainRef, request: Request, response: Response) -> Dict[str, Any]:
        client_id = client_of(request, response)
        result = ledger.record_refine(client_id, body.chainId)
        return {
            "ok": True,
            "chain": result.chain.model_dump(by_alias=True) if result.chain else None,
            "reachedLimit": result.reached_limit,
        }

    @app.post("/api/chain/end")
    def chain_end(body: ChainRef, request: Request, response: Response) -> Dict[str, Any]:
        client_id = client_of(request, response)
        tier = parse_tier(body.tier)
        beta = effective_beta(client_id, beta_from_body(body.beta))
        return {"ok": True, "ended": ledger.end_chain(client_id, body.chainId, tier, beta)}

    # ---------- Recommendations ----------
    @app.post("/api/recs")
    def recs(body: RecsRequest, request: Request, response: Response, background: BackgroundTasks) -> Dict[str, Any]:
        if not body.prompt or not body.prompt.strip():
            raise HTTPException(status_code=400, detail="Missing prompt")

        client_id = client_of(request, response)
        tier = parse_tier(body.tier)
        chain_out = None

        if body.chainId:
            try:
                check_chain_id(body.chainId)
            except InvalidChainId as e:
                raise HTTPException(status_code=400, detail=str(e))
            chain = ledger.active_chain(client_id)
            if chain is None or chain.id != body.chainId:
                raise HTTPException(status_code=409, detail="Unknown or ended chain")
            if not chain.base_served:
                chain = ledger.mark_base_served(client_id, chain.id)
            elif chain.at_refine_limit:
                raise HTTPException(status_code=429, detail={"error": "refine_limit", "chain": chain.model_dump(by_alias=True)})
            else:
                chain = ledger.record_refine(client_id, chain.id).chain
            chain_out = chain.model_dump(by_alias=True) if chain else None
            gate = quota_wall.can_search_now(client_id, tier, effective_beta(client_id, BetaFlags()))
        else:
            gate = search_wall.gate_and_maybe_increment(client_id, tier)
            if not gate.allowed:
                raise HTTPException(status_code=429, detail={"error": "daily_cap_reached", "gate": gate.to_dict()})

        try:
            items = recommender.recommend(body.prompt, body.hints, body.category, body.refiners)
        except RecommenderUnavailable as e:
            raise HTTPException(status_code=503, detail=str(e))
        except BadModelOutput as e:
            logger.warning("bad model output: %s", e)
            raise HTTPException(status_code=502, detail="Bad model output")

        background.add_task(sink.record, "usage_events", {
            "event": "search",
            "prompt": body.prompt,
            "client_id": client_id,
            "created_at": stamp(),
        })
        return {
            "items": [it.model_dump() for it in items],
            "gate": gate.to_dict(),
            "chain": chain_out,
        }

    # ---------- Feedback / tracking ----------
    @app.post("/api/feedback")
    def feedback(body: FeedbackRequest, request: Request, response: Response, background: BackgroundTasks) -> Dict[str, Any]:
        if body.vote not in ("up", "down"):
            raise HTTPException(status_code=400, detail="Missing or invalid vote")
        client_id = client_of(request, response)
        row = {
            "vote": body.vote,
            "item_id": body.itemId,
            "item_title": body.itemTitle,
            "item_summary": body.itemSummary,
            "prompt": body.prompt,
            "user_id": body.userId,
            "tier": (body.tier or "guest"),
            "client_id": client_id,
            "created_at": stamp(),
        }
        logger.info("[feedback] %s", row)
        background.add_task(sink.record, "feedback", row)
        return {"ok": True}

    @app.post("/api/track")
    def track(body: TrackRequest, request: Request, response: Response, background: BackgroundTasks) -> Dict[str, Any]:
        client_id = client_of(request, response)
        day = quota_wall.today()
        logger.info("[track] %s %s :: %s %s", day, client_id, body.event, body.details)
        background.add_task(sink.record, "usage_events", {
            "event": body.event,
            "prompt": body.details.get("prompt"),
            "client_id": client_id,
            "created_at": stamp(),
        })
        return {"ok": True}

    # ---------- Unlocks ----------
    @app.post("/api/survey")
    def survey(body: SurveyRequest, request: Request, response: Response) -> Dict[str, Any]:
        client_id = client_of(request, response)
        answers = body.answers if body.answers is not None else {
            k: v for k, v in body.model_dump().items() if k != "answers" and v is not None
        }
        now = clock()
        try:
            sink.insert("survey_responses", [{
                "answers": answers,
                "client_id": client_id,
                "usage_date": now.date().isoformat(),
                "created_at": now.isoformat(),
            }])
        except SupabaseUnavailable as e:
            raise HTTPException(status_code=503, detail=str(e))

        try:
            before = quota_wall.cap(Tier.GUEST, store.beta_flags(client_id))
            after = quota_wall.cap(Tier.GUEST, store.grant_beta(client_id, beta1=True))
        except QuotaStoreError as e:
            raise HTTPException(status_code=503, detail=str(e))
        return {"ok": True, "granted": int(after) - int(before)}

    @app.get("/api/beta")
    def beta_status(request: Request, response: Response) -> Dict[str, Any]:
        client_id = client_of(request, response)
        try:
            flags = store.beta_flags(client_id)
        except QuotaStoreError as e:
            raise HTTPException(status_code=503, detail=str(e))
        return {"ok": True, "beta": vars(flags)}

    @app.post("/api/beta/unlock")
    def beta_unlock(body: BetaUnlockRequest, request: Request, response: Response) -> Dict[str, Any]:
        email = (body.email or "").strip()
        if not _EMAIL_RE.match(email):
            raise HTTPException(status_code=400, detail="Invalid email")
        client_id = client_of(request, response)
        try:
            flags = store.grant_beta(client_id, beta2=True, email=email)
        except QuotaStoreError as e:
            raise HTTPException(status_code=503, detail=str(e))
        return {"ok": True, "beta": vars(flags)}

    # ---------- Content ----------
    @app.post("/api/nudge")
    def nudge(body: NudgeRequest) -> Dict[str, str]:
        return {"nudge": pick_nudge(body.vertical, body.history)}

    @app.get("/api/seed")
    def seed(v: str = "") -> Dict[str, Any]:
        return {"items": seeds_for(v)}

    # ---------- Admin ----------
    @app.get("/api/admin/stats")
    def admin_stats() -> Dict[str, Any]:
        try:
            return reports.stats(clock())
        except SupabaseUnavailable as e:
            raise HTTPException(status_code=503, detail=str(e))

    @app.get("/api/admin/recent")
    def admin_recent() -> Dict[str, Any]:
        try:
            return reports.recent()
        except SupabaseUnavailable as e:
            raise HTTPException(status_code=503, detail=str(e))

    @app.get("/api/usage_list")
    def usage_list() -> Dict[str, Any]:
        try:
            return reports.usage_list()
        except SupabaseUnavailable as e:
            raise HTTPException(status_code=503, detail=str(e))

    return app


app = create_app()
