"""``bulkcerts status``: report which bundles already have a certificate.

Read-only: never contacts the CA and never writes to the workspace.
"""

from __future__ import annotations

import logging

log = logging.getLogger(__name__)


def run_status(config, args) -> None:
    """Print one line per bundle with its issuance state."""
    from bulkcerts.core.domains import load_domains
    from bulkcerts.core.errors import StorageError
    from bulkcerts.core.paths import Workspace
    from bulkcerts.storage import CredentialStore

    settings = config.settings
    bundles, _ = load_domains(args.input, settings.input.delimiter)
    store = CredentialStore(Workspace(settings.workspace.path))

    issued = 0
    for bundle in bundles:
        primary = bundle[0]
        if not store.exists(primary):
            print(f"{primary:<40} pending")
            continue

        issued += 1
        try:
            metadata = store.load_certificate_asset(primary).metadata
        except StorageError as exc:
            log.debug("No usable metadata for %s: %s", primary, exc)
            print(f"{primary:<40} issued")
            continue

        if metadata.not_after is not None:
            print(f"{primary:<40} issued   expires {metadata.not_after:%Y-%m-%d}")
        else:
            print(f"{primary:<40} issued")

    print(f"{issued}/{len(bundles)} bundle(s) issued")
