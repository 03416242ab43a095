"""FastAPI surface: ``POST /analyze-drug``, ``POST /check-risks`` and ``GET /health``."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import AgentConfig
from .errors import AnalysisAborted, ConfigurationError
from .models import InputRequest
from .pharmaceutical.risk_checker import DrugInfo, UserProfile, check_risks
from .pipeline import DrugAnalysisPipeline

logger = logging.getLogger(__name__)


class AnalyzeDrugRequest(BaseModel):
    drug_name: str = ""
    language: Optional[str] = None
    requester_id: Optional[str] = None
    input_source: Optional[str] = None


class UserProfileModel(BaseModel):
    allergies: List[str] = Field(default_factory=list)
    conditions: List[str] = Field(default_factory=list)
    current_medications: List[str] = Field(default_factory=list)


class DrugInfoModel(BaseModel):
    name: str
    ingredients: List[str] = Field(default_factory=list)
    contraindications: List[str] = Field(default_factory=list)
    interactions: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class CheckRisksRequest(BaseModel):
    user_profile: UserProfileModel
    drug_info: DrugInfoModel
    language: str = "zh-CN"


def create_app(config: Optional[AgentConfig] = None, pipeline: Optional[DrugAnalysisPipeline] = None) -> FastAPI:
    config = config or AgentConfig.from_env()
    app = FastAPI(title="Drug Analysis Agent")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    configuration_error: Optional[str] = None
    if pipeline is None:
        try:
            pipeline = DrugAnalysisPipeline.from_config(config)
        except ConfigurationError as exc:
            logger.error("Analysis pipeline unavailable: %s", exc)
            configuration_error = str(exc)
    app.state.pipeline = pipeline
    app.state.config = config

    @app.get("/health")
    async def health():
        payload = {
            "status": "ok" if app.state.pipeline is not None else "degraded",
            "config_errors": list(config.errors),
            "config_warnings": list(config.warnings),
        }
        limiter = getattr(app.state.pipeline, "rate_limiter", None)
        if limiter is not None:
            status = limiter.status()
            payload["registry_requests"] = {
                "used_today": status.used_today,
                "remaining_today": status.remaining_today,
                "by_registry": status.usage_by_registry,
            }
        return payload

    @app.post("/analyze-drug")
    async def analyze_drug(body: AnalyzeDrugRequest):
        if app.state.pipeline is None:
            return JSONResponse(
                status_code=500,
                content={"success": False, "error": f"Service misconfigured: {configuration_error}"},
            )
        request = InputRequest(
            raw_name=body.drug_name,
            language=body.language or config.default_language,
            requester_id=body.requester_id,
            input_source=body.input_source,
        )
        try:
            result = await app.state.pipeline.analyze(request)
        except AnalysisAborted as exc:
            logger.info("Analysis aborted at %s: %s", exc.stage, exc.reason)
            return JSONResponse(status_code=400, content=exc.to_dict())
        return result.to_dict()

    @app.post("/check-risks")
    async def check_risks_endpoint(body: CheckRisksRequest):
        profile = UserProfile(
            allergies=tuple(body.user_profile.allergies),
            conditions=tuple(body.user_profile.conditions),
            current_medications=tuple(body.user_profile.current_medications),
        )
        drug = DrugInfo(
            name=body.drug_info.name,
            ingredients=tuple(body.drug_info.ingredients),
            contraindications=tuple(body.drug_info.contraindications),
            interactions=tuple(body.drug_info.interactions),
            warnings=tuple(body.drug_info.warnings),
        )
        alerts = check_risks(profile, drug, body.language)
        return {
            "success": True,
            "alerts": [alert.to_dict() for alert in alerts],
            "checked_at": datetime.now(timezone.utc).isoformat(),
        }

    return app


def main() -> None:
    import uvicorn
    from dotenv import load_dotenv

    load_dotenv()
    config = AgentConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(create_app(config), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
