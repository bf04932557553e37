"""Pattern and device based risk detection."""

import re

from ..config import OperationPolicy, match_band
from ..models import FlagType, Operation, RiskFlag, RiskHistory, RiskRequest
from .base import RiskDetector


class UserAgentDetector(RiskDetector):
    """Flags missing or short client signatures and automation signatures."""

    detector_id = "user_agent"
    flag_type = FlagType.PATTERN

    def detect(
        self,
        request: RiskRequest,
        history: RiskHistory,
        policy: OperationPolicy,
    ) -> list[RiskFlag]:
        thresholds = policy.patterns
        user_agent = request.user_agent or ""
        flags: list[RiskFlag] = []

        if len(user_agent) < thresholds.min_user_agent_length:
            flags.append(
                self._flag(
                    "medium",
                    thresholds.short_user_agent_score,
                    "Suspicious or missing user agent",
                    evidence={"user_agent": user_agent},
                )
            )

        if user_agent and re.search(thresholds.automation_pattern, user_agent, re.IGNORECASE):
            flags.append(
                self._flag(
                    "high",
                    thresholds.automation_score,
                    "Automated user agent detected",
                    evidence={"user_agent": user_agent},
                )
            )

        return flags


class NetworkOriginDetector(RiskDetector):
    """Flags blocked origins and repeated requests from one origin or for one subject."""

    detector_id = "network_origin"
    flag_type = FlagType.PATTERN

    def detect(
        self,
        request: RiskRequest,
        history: RiskHistory,
        policy: OperationPolicy,
    ) -> list[RiskFlag]:
        thresholds = policy.patterns
        flags: list[RiskFlag] = []

        if history.origin_blocked:
            flags.append(
                self._flag(
                    "critical",
                    thresholds.blocklist_score,
                    "Network origin is blocked",
                    evidence={"ip_address": request.ip_address},
                    flag_type=FlagType.BLOCKLIST,
                )
            )

        band = match_band(history.origin_request_count, thresholds.origin_bands)
        if band is not None:
            flags.append(
                self._band_flag(
                    band,
                    f"{history.origin_request_count} {request.operation.value} requests "
                    f"from the same network origin in {thresholds.origin_window_hours}h",
                    evidence={
                        "ip_address": request.ip_address,
                        "origin_request_count": history.origin_request_count,
                    },
                )
            )

        if request.operation == Operation.REFUND:
            band = match_band(history.subject_request_count, thresholds.subject_bands)
            if band is not None:
                flags.append(
                    self._band_flag(
                        band,
                        f"{history.subject_request_count} earlier refund requests "
                        "for the same payment",
                        evidence={
                            "subject_id": request.subject_id,
                            "subject_request_count": history.subject_request_count,
                        },
                    )
                )

        return flags
