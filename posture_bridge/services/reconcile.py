"""
Reconciliation of caller-supplied devices against the Defender inventory.

The two inventories share no primary key, so a caller device is tied to an
upstream machine by the first of three weak identifiers that agree: short
hostname, MAC address, then serial number against the machine id, device tag
or Azure AD device id. Matching is greedy: caller devices are handled in input
order, upstream machines are scanned in list order, and a machine claimed by
one caller device is never offered to another in the same batch.
"""
import logging
import re
from typing import Dict, Iterable, List, Optional, Set, Tuple

from posture_bridge.schemas.device import CallerDevice, MatchEvaluation, UpstreamDevice

logger = logging.getLogger(__name__)

UNMATCHED = "unmatched"
DUPLICATE = "duplicate"

UNMATCHED_SCORE = 0
DEFAULT_MATCH_SCORE = 50

# (riskScore, exposureLevel) -> trust score, lower-cased
POSTURE_SCORES: Dict[Tuple[str, str], int] = {
    ("low", "low"): 90,
    ("medium", "medium"): 60,
    ("medium", "high"): 53,
    ("none", "medium"): 70,
}

_MAC_SEPARATORS = re.compile(r"[:-]")

DeviceSignature = Tuple[Optional[str], Optional[str], Optional[str], Optional[str]]


def normalize_hostname(name: Optional[str]) -> str:
    return name.split(".")[0].lower() if name else ""


def normalize_mac(mac: Optional[str]) -> str:
    return _MAC_SEPARATORS.sub("", mac).lower() if mac else ""


def device_signature(device: CallerDevice) -> DeviceSignature:
    return (device.hostname, device.mac_address, device.serial_number, device.virtual_ipv4)


def upstream_macs(device: UpstreamDevice) -> List[str]:
    macs = (normalize_mac(ip.mac_address) for ip in device.ip_addresses or [])
    return [mac for mac in macs if mac]


def score_posture(risk_score: Optional[str], exposure_level: Optional[str]) -> int:
    key = ((risk_score or "").lower(), (exposure_level or "").lower())
    return POSTURE_SCORES.get(key, DEFAULT_MATCH_SCORE)


def match_reason(device: CallerDevice, candidate: UpstreamDevice) -> Optional[str]:
    """Name of the first identifier tying ``device`` to ``candidate``, or None."""
    hostname = normalize_hostname(device.hostname)
    if hostname and hostname == normalize_hostname(candidate.computer_dns_name):
        return "hostname"

    mac = normalize_mac(device.mac_address)
    if mac and mac in upstream_macs(candidate):
        return "mac_address"

    serial = device.serial_number
    if serial and serial in (candidate.id, candidate.device_tag, candidate.aad_device_id):
        return "serial_number"
    return None


def _find_match(device: CallerDevice, upstream: List[UpstreamDevice], claimed: Set[str]) -> Optional[UpstreamDevice]:
    for candidate in upstream:
        if candidate.id in claimed:
            continue
        reason = match_reason(device, candidate)
        if reason:
            logger.debug("Matched device %s to %s by %s", device.device_id, candidate.id, reason)
            return candidate
    return None


def evaluate_devices(devices: Iterable[CallerDevice], upstream: Iterable[UpstreamDevice]) -> Dict[str, MatchEvaluation]:
    """
    Score every caller device against the upstream inventory.
    Returns one MatchEvaluation per input device_id.
    """
    upstream = list(upstream)
    evaluations: Dict[str, MatchEvaluation] = {}
    claimed: Set[str] = set()
    seen: Dict[DeviceSignature, str] = {}

    for device in devices:
        signature = device_signature(device)
        if signature in seen:
            logger.info("Skipping duplicate device %s, previous device_id: %s", device.device_id, seen[signature])
            evaluations[device.device_id] = MatchEvaluation(upstream_id=DUPLICATE, score=UNMATCHED_SCORE)
            continue
        seen[signature] = device.device_id

        match = _find_match(device, upstream, claimed)
        if match is None:
            logger.info(
                "No match found for device_id %s (serial_number=%s, virtual_ipv4=%s, hostname=%s, mac_address=%s)",
                device.device_id,
                device.serial_number,
                device.virtual_ipv4,
                device.hostname,
                device.mac_address,
            )
            evaluations[device.device_id] = MatchEvaluation(upstream_id=UNMATCHED, score=UNMATCHED_SCORE)
            continue

        claimed.add(match.id)
        score = score_posture(match.risk_score, match.exposure_level)
        logger.info(
            "Assigned score %d for %s, riskScore: %s, exposureLevel: %s",
            score,
            match.id,
            match.risk_score,
            match.exposure_level,
        )
        evaluations[device.device_id] = MatchEvaluation(upstream_id=match.id, score=score)

    return evaluations
