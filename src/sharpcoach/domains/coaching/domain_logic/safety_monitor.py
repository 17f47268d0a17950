"""Safety monitor: red flags, injury triage, condition/medication checks, overtraining.

Every check here is deterministic and runs before any advice is generated.
A critical or high finding blocks the request; the orchestrator then returns
the safety recommendation instead of coaching.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime

from sharpcoach.domains.coaching.domain_logic.coaching_models import (
    SEVERITY_RANK,
    ActivityLog,
    ComprehensiveSafetyReport,
    LogCategory,
    OvertrainingScore,
    SafetyCheckResult,
    UserProfile,
    logs_since,
    utcnow,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pattern tables (ordered: first match wins)
# ---------------------------------------------------------------------------

_CRITICAL_PATTERNS = [
    re.compile(r"chest\s*(pain|pressure|tightness)", re.I),
    re.compile(r"difficulty\s*breathing|shortness\s*of\s*breath", re.I),
    re.compile(r"dizzy|faint|lightheaded", re.I),
    re.compile(r"blood\s*in\s*(stool|urine|vomit)", re.I),
    re.compile(r"severe\s*headache|vision\s*changes", re.I),
    re.compile(r"\bnumb(ness)?\b|tingling|weakness", re.I),
    re.compile(r"irregular\s*heartbeat|palpitations", re.I),
    re.compile(r"severe\s*abdominal\s*pain", re.I),
]

_CONCERNING_PATTERNS = [
    re.compile(r"persistent\s*pain", re.I),
    re.compile(r"swelling\s*that\s*won'?t\s*go\s*away", re.I),
    re.compile(r"unexplained\s*weight\s*loss", re.I),
    re.compile(r"chronic\s*fatigue", re.I),
    re.compile(r"frequent\s*infections", re.I),
]

_ACUTE_INJURY_PATTERNS = [
    re.compile(r"sharp\s*pain", re.I),
    re.compile(r"\bpop(ped)?\b|snap\s*sound", re.I),
    re.compile(r"sudden\s*swelling", re.I),
    re.compile(r"can'?t\s*bear\s*weight", re.I),
    re.compile(r"joint\s*instability", re.I),
]

_CHRONIC_INJURY_PATTERNS = [
    re.compile(r"pain\s*(for|lasting)\s*\d+\s*weeks", re.I),
    re.compile(r"getting\s*worse", re.I),
    re.compile(r"pain\s*at\s*rest", re.I),
    re.compile(r"night\s*pain", re.I),
]

_SORENESS = re.compile(r"sore|aching|pain|hurt", re.I)
_NUTRITION_WORDS = re.compile(r"\b(eat|eating|meal|food|snack|breakfast|lunch|dinner)\b", re.I)

RICE_PROTOCOL = (
    "Follow RICE protocol:\n"
    "• Rest: Stop activity immediately\n"
    "• Ice: 20 minutes every 2-3 hours for 48 hours\n"
    "• Compression: Wrap if appropriate\n"
    "• Elevation: Above heart level if possible\n"
    "See a doctor if not improving in 48 hours."
)

PASS_THROUGH_RECOMMENDATION = (
    "All safety checks passed. Proceed with your planned activity while listening to your body."
)

# Overtraining thresholds
RESTING_HR_INCREASE_BPM = 5
NEGATIVE_MOOD_WORDS = ("irritable", "depressed", "anxious")
POOR_SLEEP_WORDS = ("insomnia", "restless", "not refreshing")
OVERTRAINING_WINDOW_DAYS = 7
RED_THRESHOLD = 60
YELLOW_THRESHOLD = 35

_RED_RECOMMENDATION = (
    "High overtraining risk detected. Immediate actions:\n"
    "1. Take 3-5 days complete rest\n"
    "2. Focus on sleep (9+ hours)\n"
    "3. Increase calories by 300-500\n"
    "4. Consider blood work if symptoms persist\n"
    "5. Gradual return to training over 1-2 weeks"
)
_YELLOW_RECOMMENDATION = (
    "Moderate fatigue detected. Adjustments needed:\n"
    "1. Reduce training intensity to 70% for 2-3 days\n"
    "2. Maintain routine but make it easier\n"
    "3. Prioritize sleep and nutrition\n"
    "4. Add stress management activities"
)
_GREEN_RECOMMENDATION = (
    "Recovery looks good. Continue monitoring and ensure adequate rest between hard sessions."
)


def _normalize_tags(values: list[str]) -> set[str]:
    return {v.strip().lower().replace(" ", "_").replace("-", "_") for v in values if v}


def _first_match(patterns: list[re.Pattern[str]], text: str) -> str | None:
    for pattern in patterns:
        m = pattern.search(text)
        if m:
            return m.group(0)
    return None


class SafetyMonitor:
    """Deterministic safety gate.

    Stateless; construct once and share. All checks default to "safe" when
    nothing matches.

    Usage::

        monitor = SafetyMonitor()
        report = await monitor.perform_comprehensive_safety_check(text, profile, logs)
        if not report.safe:
            ...
    """

    # ---------------------------------------------------------------
    # Text scans
    # ---------------------------------------------------------------

    def check_medical_red_flags(self, text: str) -> SafetyCheckResult:
        matched = _first_match(_CRITICAL_PATTERNS, text)
        if matched:
            logger.warning("Critical red flag detected in input")
            return SafetyCheckResult(
                check="medical_red_flags",
                safe=False,
                severity="critical",
                block_activity=True,
                requires_medical_attention=True,
                message="Medical emergency symptoms detected",
                recommendation=(
                    "Stop all activity immediately and seek emergency medical care. "
                    "If symptoms are severe, call emergency services."
                ),
                matched=matched,
            )

        matched = _first_match(_CONCERNING_PATTERNS, text)
        if matched:
            return SafetyCheckResult(
                check="medical_red_flags",
                safe=False,
                severity="high",
                block_activity=True,
                requires_medical_attention=True,
                message="Concerning symptoms detected",
                recommendation=(
                    "Please consult with your healthcare provider before continuing "
                    "your training plan."
                ),
                matched=matched,
            )

        return SafetyCheckResult(check="medical_red_flags")

    def detect_injury(self, text: str) -> SafetyCheckResult:
        matched = _first_match(_ACUTE_INJURY_PATTERNS, text)
        if matched:
            return SafetyCheckResult(
                check="injury",
                safe=False,
                severity="high",
                block_activity=True,
                requires_medical_attention=True,
                message="Acute injury detected",
                recommendation=RICE_PROTOCOL,
                matched=matched,
            )

        matched = _first_match(_CHRONIC_INJURY_PATTERNS, text)
        if matched:
            return SafetyCheckResult(
                check="injury",
                safe=False,
                severity="medium",
                block_activity=False,
                requires_medical_attention=True,
                message="Chronic injury pattern detected",
                recommendation=(
                    "This appears to be a chronic issue. You need professional assessment "
                    "from a physical therapist or sports medicine doctor. Work around the "
                    "injury, not through it."
                ),
                matched=matched,
            )

        return SafetyCheckResult(check="injury")

    # ---------------------------------------------------------------
    # Profile cross-references
    # ---------------------------------------------------------------

    def check_chronic_conditions(
        self, profile: UserProfile, planned_activity: str
    ) -> SafetyCheckResult:
        conditions = _normalize_tags(profile.health_conditions)

        if "diabetes" in conditions and re.search(r"fasting|no.*food", planned_activity, re.I):
            return SafetyCheckResult(
                check="chronic_conditions",
                safe=False,
                severity="medium",
                block_activity=True,
                message="Diabetes safety concern",
                recommendation=(
                    "With diabetes, fasting workouts are not recommended. Check blood sugar "
                    "and have 15-30g carbs if below 100mg/dL."
                ),
            )

        if "heart_disease" in conditions and re.search(
            r"high.*intensity|hiit|sprint", planned_activity, re.I
        ):
            return SafetyCheckResult(
                check="chronic_conditions",
                safe=False,
                severity="high",
                block_activity=True,
                requires_medical_attention=True,
                message="Heart disease precaution",
                recommendation=(
                    "With heart disease, high-intensity exercise requires medical clearance. "
                    "Stay within prescribed heart rate zones."
                ),
            )

        if "asthma" in conditions:
            return SafetyCheckResult(
                check="chronic_conditions",
                severity="low",
                recommendation=(
                    "With asthma, use prescribed inhaler 15 minutes before exercise if "
                    "recommended by your doctor. Stop if you experience wheezing or chest "
                    "tightness."
                ),
            )

        return SafetyCheckResult(check="chronic_conditions")

    def check_medication_interactions(
        self,
        profile: UserProfile,
        planned_activity: str,
        planned_nutrition: str | None = None,
    ) -> SafetyCheckResult:
        medications = _normalize_tags(profile.medications)

        if "beta_blockers" in medications and re.search(
            r"heart.*rate.*zone", planned_activity, re.I
        ):
            return SafetyCheckResult(
                check="medication_interactions",
                severity="low",
                recommendation=(
                    "Beta blockers affect heart rate. Use perceived exertion (RPE) instead "
                    "of heart rate zones for training intensity."
                ),
            )

        if "blood_thinners" in medications and re.search(
            r"contact|martial|boxing", planned_activity, re.I
        ):
            return SafetyCheckResult(
                check="medication_interactions",
                safe=False,
                severity="high",
                block_activity=True,
                message="Blood thinner safety",
                recommendation=(
                    "Contact sports are not recommended while on blood thinners due to "
                    "bleeding risk."
                ),
            )

        if (
            "metformin" in medications
            and planned_nutrition
            and re.search(r"high.*intensity", planned_activity, re.I)
        ):
            return SafetyCheckResult(
                check="medication_interactions",
                severity="low",
                recommendation=(
                    "Metformin may cause stomach upset with intense exercise. Consider "
                    "timing dose after workout."
                ),
            )

        return SafetyCheckResult(check="medication_interactions")

    # ---------------------------------------------------------------
    # Overtraining
    # ---------------------------------------------------------------

    def calculate_overtraining_score(
        self,
        logs: list[ActivityLog],
        profile: UserProfile,
        *,
        now: datetime | None = None,
    ) -> OvertrainingScore:
        """Additive 7-day overtraining risk index, clamped to [0, 100]."""
        now = now or utcnow()
        window = logs_since(logs, now, days=OVERTRAINING_WINDOW_DAYS)
        score = 0
        factors: list[str] = []

        # Resting heart rate elevation above the profile baseline
        hr_values = [v for v in (log.number("restingHR", "resting_hr") for log in window) if v]
        if hr_values and profile.resting_hr:
            increase = sum(hr_values) / len(hr_values) - profile.resting_hr
            if increase > RESTING_HR_INCREASE_BPM:
                score += 20
                factors.append(f"resting_hr_elevated_by_{increase:.0f}bpm")

        mood_logs = [log for log in window if log.category is LogCategory.MOOD]
        negative = [log for log in mood_logs if any(w in log.text for w in NEGATIVE_MOOD_WORDS)]
        if mood_logs and len(negative) > len(mood_logs) * 0.5:
            score += 15
            factors.append("negative_mood_majority")

        sleep_logs = [log for log in window if log.category is LogCategory.SLEEP]
        poor_sleep = [
            log for log in sleep_logs
            if (log.number("quality") is not None and log.number("quality") < 5)
            or any(w in log.text for w in POOR_SLEEP_WORDS)
        ]
        if sleep_logs and len(poor_sleep) > len(sleep_logs) * 0.5:
            score += 15
            factors.append("poor_sleep_majority")

        soreness = [log for log in window if _SORENESS.search(log.original_text or "")]
        if len(soreness) > 4:
            score += 20
            factors.append("persistent_soreness")

        hard_sessions = [
            log for log in window
            if log.is_exercise and (log.number("intensity") or 0) > 7
        ]
        if len(hard_sessions) > 5:
            score += 10
            factors.append("high_intensity_load")

        score = max(0, min(100, score))

        if score >= RED_THRESHOLD:
            status, recommendation = "red", _RED_RECOMMENDATION
        elif score >= YELLOW_THRESHOLD:
            status, recommendation = "yellow", _YELLOW_RECOMMENDATION
        else:
            status, recommendation = "green", _GREEN_RECOMMENDATION

        return OvertrainingScore(
            score=score, status=status, factors=factors, recommendation=recommendation
        )

    # ---------------------------------------------------------------
    # Combined gate
    # ---------------------------------------------------------------

    async def perform_comprehensive_safety_check(
        self,
        text: str,
        profile: UserProfile,
        logs: list[ActivityLog],
        *,
        now: datetime | None = None,
    ) -> ComprehensiveSafetyReport:
        """Run every check concurrently and merge the findings."""
        planned_nutrition = text if _NUTRITION_WORDS.search(text) else None

        red_flags, injury, conditions, medications, overtraining = await asyncio.gather(
            asyncio.to_thread(self.check_medical_red_flags, text),
            asyncio.to_thread(self.detect_injury, text),
            asyncio.to_thread(self.check_chronic_conditions, profile, text),
            asyncio.to_thread(
                self.check_medication_interactions, profile, text, planned_nutrition
            ),
            asyncio.to_thread(self.calculate_overtraining_score, logs, profile, now=now),
        )
        checks = [red_flags, injury, conditions, medications]

        safe = all(c.safe for c in checks) and overtraining.status != "red"

        critical = [c for c in checks if c.severity == "critical"]
        high = [c for c in checks if c.severity == "high"]
        if critical:
            final = critical[0].recommendation
        elif high:
            final = high[0].recommendation
        elif overtraining.status == "red":
            final = overtraining.recommendation
        else:
            final = PASS_THROUGH_RECOMMENDATION

        report = ComprehensiveSafetyReport(
            safe=safe, checks=checks, overtraining=overtraining, final_recommendation=final
        )
        if not safe:
            logger.info(
                "Safety gate failed: severity=%s overtraining=%s",
                report.highest_severity,
                overtraining.status,
            )
        return report


def must_block(report: ComprehensiveSafetyReport) -> bool:
    """True when a critical or high finding requires halting advice generation."""
    return any(SEVERITY_RANK[c.severity] >= SEVERITY_RANK["high"] for c in report.checks)
