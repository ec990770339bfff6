import logging
from typing import List

import httpx
from pydantic import ValidationError

from posture_bridge.core.config import Settings
from posture_bridge.core.errors import UpstreamFetchError
from posture_bridge.schemas.device import UpstreamDevice
from posture_bridge.services.tokens import DefenderTokenManager

logger = logging.getLogger(__name__)

_LOGGED_FIELDS = {"id", "computer_dns_name", "ip_addresses", "last_external_ip_address", "device_tag", "aad_device_id", "last_seen"}


class DefenderDeviceFetcher:
    """Pulls the machine inventory from the Defender API, one page per call."""

    def __init__(self, settings: Settings, token_manager: DefenderTokenManager, client: httpx.AsyncClient):
        self.settings = settings
        self.token_manager = token_manager
        self.client = client

    async def fetch_devices(self) -> List[UpstreamDevice]:
        token = await self.token_manager.get_access_token()
        logger.info("Fetching Defender device data")
        try:
            resp = await self.client.get(
                self.settings.defender_machines_url,
                headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
            )
        except httpx.HTTPError as exc:
            logger.error("Defender API request error: %s", exc)
            raise UpstreamFetchError(f"Defender API request failed: {exc}") from exc

        if not resp.is_success:
            logger.error("Defender API request failed: %s %s", resp.status_code, resp.text)
            raise UpstreamFetchError(
                f"Defender API request failed: {resp.status_code} {resp.reason_phrase}",
                status=resp.status_code,
                body=resp.text,
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise UpstreamFetchError("Defender API returned a non-JSON body", status=resp.status_code, body=resp.text) from exc
        if not isinstance(data, dict) or not isinstance(data.get("value"), list):
            raise UpstreamFetchError("Defender API response is missing 'value'", status=resp.status_code, body=resp.text)

        try:
            devices = [UpstreamDevice.model_validate(item) for item in data["value"]]
        except ValidationError as exc:
            raise UpstreamFetchError(f"Defender API returned an invalid device: {exc}", status=resp.status_code, body=resp.text) from exc

        if data.get("@odata.nextLink"):
            # following the link is out of scope; matching runs on the first page only
            logger.warning("Defender inventory is paginated; only the first %d devices are used", len(devices))

        logger.info("Defender API returned %d devices", len(devices))
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Defender devices: %s", [d.model_dump(include=_LOGGED_FIELDS) for d in devices])
        return devices
