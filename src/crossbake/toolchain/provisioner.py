"""Toolchain provisioning with at-most-one fetch per (channel, target).

Concurrent requests for the same pair share one in-flight future. Every waiter
receives the same bundle or the same exception. Failures are never cached:
the next request after a failure provisions again from a clean store entry.
"""

from __future__ import annotations

import concurrent.futures
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field

from crossbake.errors import CrossbakeError, ToolchainUnavailable
from crossbake.models import TargetId, ToolchainBundle
from crossbake.observability import StructuredLogger
from crossbake.toolchain.bundle import BundleBuilder
from crossbake.toolchain.channel import Channel, parse_channel
from crossbake.toolchain.fetch import ComponentFetcher
from crossbake.toolchain.store import ToolchainStore


@dataclass(slots=True)
class ToolchainProvisioner:
    store: ToolchainStore
    fetcher: ComponentFetcher
    timeout: float | None = None
    logger: StructuredLogger = field(default_factory=StructuredLogger)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _inflight: dict[tuple[str, TargetId], Future[ToolchainBundle]] = field(
        default_factory=dict, init=False, repr=False
    )
    _resolved: dict[tuple[str, TargetId], ToolchainBundle] = field(
        default_factory=dict, init=False, repr=False
    )
    fetch_count: int = field(default=0, init=False)

    def provision(
        self,
        channel: str,
        target: TargetId,
        *,
        cancel: threading.Event | None = None,
    ) -> ToolchainBundle:
        """Return a bundle for (*channel*, *target*), fetching at most once.

        *cancel* is handed to the fetcher of the caller that performs the fetch.
        """
        parsed = parse_channel(channel)
        key = (str(parsed), target)

        with self._lock:
            resolved = self._resolved.get(key)
            if resolved is not None and all(c.path.exists() for c in resolved.components):
                return resolved
            future = self._inflight.get(key)
            owner = future is None
            if future is None:
                future = Future()
                self._inflight[key] = future

        if owner:
            try:
                bundle = self._provision(parsed, target, cancel)
            except CrossbakeError as exc:
                future.set_exception(exc)
            except OSError as exc:
                future.set_exception(
                    ToolchainUnavailable(
                        "Toolchain provisioning failed with an I/O error.",
                        context={"channel": key[0], "target": target, "error": str(exc)},
                    ),
                )
            except BaseException as exc:
                future.set_exception(exc)
                raise
            else:
                with self._lock:
                    self._resolved[key] = bundle
                future.set_result(bundle)
            finally:
                with self._lock:
                    self._inflight.pop(key, None)

        try:
            return future.result(timeout=self.timeout)
        except concurrent.futures.TimeoutError as exc:
            raise ToolchainUnavailable(
                "Timed out waiting for toolchain provisioning.",
                hint="Retry, or raise provision_timeout.",
                context={"operation": "provision", "channel": key[0], "target": target},
            ) from exc

    def _provision(
        self,
        channel: Channel,
        target: TargetId,
        cancel: threading.Event | None,
    ) -> ToolchainBundle:
        name = str(channel)
        cached = self.store.load(name, target)
        if cached is not None:
            self._log(target, "Reusing stored bundle.", extra={"identity": cached.identity})
            return cached

        self._log(target, "Provisioning toolchain.", extra={"channel": name})
        with self.store.staging(name, target) as staged:
            with self._lock:
                self.fetch_count += 1
            try:
                components = self.fetcher.fetch(
                    channel,
                    target,
                    staged,
                    timeout=self.timeout,
                    cancel=cancel,
                )
                builder = BundleBuilder(channel=name, target=target)
                for component in components:
                    builder.add(component)
                bundle = self.store.commit(staged, builder.build())
            except CrossbakeError as exc:
                self._log(target, "Provisioning failed.", level="error", extra=exc.to_dict())
                raise
        self._log(target, "Toolchain provisioned.", extra={"identity": bundle.identity})
        return bundle

    def _log(
        self,
        target: TargetId,
        message: str,
        *,
        level: str = "info",
        extra: dict[str, object] | None = None,
    ) -> None:
        self.logger.log(
            operation="provision",
            target=target,
            linkage=None,
            profile=None,
            phase="provision",
            message=message,
            level=level,
            extra=extra,
        )
