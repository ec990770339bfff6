import logging
from typing import Dict, List

from posture_bridge.core.errors import ProviderError
from posture_bridge.schemas.device import CallerDevice, MatchEvaluation
from posture_bridge.services.reconcile import evaluate_devices
from posture_bridge.services.telemetry import DefenderDeviceFetcher

logger = logging.getLogger(__name__)


async def compute_posture_scores(devices: List[CallerDevice], fetcher: DefenderDeviceFetcher) -> Dict[str, MatchEvaluation]:
    """Fetch telemetry and score ``devices``; a provider outage yields an empty result."""
    try:
        upstream = await fetcher.fetch_devices()
    except ProviderError as exc:
        logger.error("Error fetching Defender data: %s", exc)
        return {}
    return evaluate_devices(devices, upstream)
