"""
Transfer Channel — Delivers knowledge packages to peer instances.

Packages are POSTed to ``{endpoint}/knowledge/import`` with a bounded
timeout. When no endpoint is registered, or delivery fails, the package is
written as a timestamped JSON document under ``fallback_dir/<target>/``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path

import httpx
from pydantic import BaseModel, ValidationError

from self_evolution.config import TransferConfig
from self_evolution.errors import DeliveryFailure
from self_evolution.knowledge.schemas import KnowledgeTransferPackage

logger = logging.getLogger(__name__)

VERSION_HEADER = "X-Knowledge-Version"


class DeliveryReceipt(BaseModel):
    """Where a package ended up."""

    target_system: str
    delivered: bool
    location: str | None = None
    status_code: int | None = None
    error: str | None = None


class TransferChannel:
    """
    HTTP delivery with a durable file fallback.

    Usage::

        channel = TransferChannel(config.transfer)
        receipt = await channel.send(package)
        if not receipt.delivered:
            print("saved to", receipt.location)
    """

    def __init__(
        self,
        config: TransferConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.fallback_dir = config.fallback_dir
        self._transport = transport

    def endpoint_for(self, target_system: str) -> str | None:
        endpoint = self.config.endpoints.get(target_system)
        return endpoint.rstrip("/") if endpoint else None

    def register_endpoint(self, target_system: str, base_url: str) -> None:
        self.config.endpoints[target_system] = base_url

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            VERSION_HEADER: self.config.compatibility_version,
        }

    def _get_client(self) -> httpx.AsyncClient:
        """Client with the configured timeout (and test transport, if any)."""
        return httpx.AsyncClient(timeout=self.config.timeout_seconds, transport=self._transport)

    async def send(self, package: KnowledgeTransferPackage) -> DeliveryReceipt:
        """
        Deliver a package, falling back to a local file.

        Never raises for delivery problems; the receipt says what happened.
        """
        target = package.target_system
        endpoint = self.endpoint_for(target)

        if endpoint is None:
            logger.info("No endpoint registered for %s, writing fallback file", target)
            path = await self.save_to_file(package)
            return DeliveryReceipt(target_system=target, delivered=False, location=str(path))

        try:
            status = await self.deliver(endpoint, package)
        except DeliveryFailure as exc:
            logger.warning("%s; falling back to file", exc)
            path = await self.save_to_file(package)
            return DeliveryReceipt(
                target_system=target,
                delivered=False,
                location=str(path),
                error=exc.reason,
            )

        logger.info("Delivered knowledge package to %s (%d)", target, status)
        return DeliveryReceipt(
            target_system=target,
            delivered=True,
            location=f"{endpoint}/knowledge/import",
            status_code=status,
        )

    async def deliver(self, endpoint: str, package: KnowledgeTransferPackage) -> int:
        """
        POST the package to a peer.

        Returns:
            The response status code.

        Raises:
            DeliveryFailure: On timeout, connection error or non-2xx status.
        """
        async with self._get_client() as client:
            try:
                response = await client.post(
                    f"{endpoint}/knowledge/import",
                    content=package.model_dump_json(),
                    headers=self._headers(),
                )
                response.raise_for_status()
            except httpx.HTTPError as exc:
                raise DeliveryFailure(package.target_system, str(exc) or type(exc).__name__) from exc
        return response.status_code

    async def save_to_file(self, package: KnowledgeTransferPackage) -> Path:
        return await asyncio.to_thread(self._write_package, package)

    def _write_package(self, package: KnowledgeTransferPackage) -> Path:
        target_dir = self.fallback_dir / package.target_system
        target_dir.mkdir(parents=True, exist_ok=True)

        stamp = int(time.time() * 1000)
        path = target_dir / f"transfer_{stamp}.json"
        suffix = 1
        while path.exists():
            path = target_dir / f"transfer_{stamp}_{suffix}.json"
            suffix += 1

        path.write_text(package.model_dump_json(indent=2), encoding="utf-8")
        return path

    def load_fallback_packages(self, target_system: str) -> list[KnowledgeTransferPackage]:
        """Read every fallback package written for ``target_system``, oldest first."""
        target_dir = self.fallback_dir / target_system
        if not target_dir.is_dir():
            return []

        packages = []
        for path in sorted(target_dir.glob("transfer_*.json")):
            try:
                packages.append(
                    KnowledgeTransferPackage.model_validate_json(path.read_text(encoding="utf-8"))
                )
            except (ValidationError, OSError) as exc:
                logger.warning("Skipping unreadable transfer package %s: %s", path, exc)
        return packages
