"""Quarantine manifest cache."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from flake_triage.backend import BackendClient
from flake_triage.config import QuarantineMode
from flake_triage.errors import ManifestFetchError
from flake_triage.models.api import QuarantinedTest, TestSuiteManifest
from flake_triage.models.test_ref import TEST_NAME_ENTRY_MAX_LENGTH, TestRef

log = logging.getLogger(__name__)


@dataclass(kw_only=True)
class ManifestCache:
    """Quarantine manifest fetched at most once per run.

    If the manifest cannot be fetched the cache stays unavailable and no test
    is considered quarantined for the rest of the run.
    """

    client: BackendClient | None
    quarantine_mode: QuarantineMode

    _fetched: bool = field(default=False, init=False, repr=False)
    _manifest: TestSuiteManifest | None = field(default=None, init=False, repr=False)
    _exact: set[tuple[str, tuple[str, ...]]] = field(
        default_factory=set, init=False, repr=False
    )
    _truncated: dict[tuple[str, tuple[str, ...]], list[str]] = field(
        default_factory=dict, init=False, repr=False
    )

    @property
    def available(self) -> bool:
        return self._manifest is not None

    async def fetch(self) -> TestSuiteManifest | None:
        """Fetch and index the manifest, returning None when unavailable."""
        if self._fetched:
            return self._manifest
        self._fetched = True

        if self.client is None or self.quarantine_mode == "no_quarantine":
            log.info("Quarantine disabled, not fetching manifest")
            return None

        try:
            manifest = await self.client.get_manifest()
        except ManifestFetchError as e:
            log.warning("%s. Test failures will NOT be quarantined.", e)
            return None

        self._index(manifest)
        self._manifest = manifest
        log.info(
            "Quarantine manifest lists %d test(s)", len(manifest.quarantined_tests)
        )
        return manifest

    def is_quarantined(self, ref: TestRef) -> bool:
        """Whether a test is quarantined.

        Exact match on the capped name first. Entries whose last component is
        at the length cap were truncated by the backend, so the untruncated
        local component only has to start with it.
        """
        if not self.available or self.quarantine_mode == "no_quarantine":
            return False

        name = ref.backend_name
        if (ref.filename, name) in self._exact:
            return True

        prefixes = self._truncated.get((ref.filename, name[:-1]), ())
        last = ref.title_path[len(name) - 1]
        return any(last.startswith(prefix) for prefix in prefixes)

    def quarantined_tests(self, filename: str) -> Sequence[QuarantinedTest]:
        if self._manifest is None:
            return ()
        return [
            test
            for test in self._manifest.quarantined_tests
            if test.filename == filename
        ]

    def _index(self, manifest: TestSuiteManifest) -> None:
        for test in manifest.quarantined_tests:
            name = tuple(test.name)
            if not name:
                continue
            self._exact.add((test.filename, name))
            if len(name[-1]) == TEST_NAME_ENTRY_MAX_LENGTH:
                self._truncated.setdefault((test.filename, name[:-1]), []).append(
                    name[-1]
                )
