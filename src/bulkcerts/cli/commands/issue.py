"""``bulkcerts issue``: obtain certificates for every bundle in a file."""

from __future__ import annotations

import logging

log = logging.getLogger(__name__)


def run_issue(config, args) -> None:
    """Load bundles and the account, then run the orchestrator."""
    from bulkcerts.core.domains import load_domains
    from bulkcerts.core.paths import Workspace
    from bulkcerts.services.issuance import IssuanceOrchestrator
    from bulkcerts.storage import CredentialStore

    settings = config.settings
    bundles, domains = load_domains(args.input, settings.input.delimiter)
    log.info("Loaded %d bundle(s) covering %d domain(s)", len(bundles), len(domains))

    store = CredentialStore(
        Workspace(settings.workspace.path),
        key_size=settings.account.key_size,
    )
    account = store.load(settings.account.email)

    orchestrator = IssuanceOrchestrator(settings, store)
    report = orchestrator.obtain_certs(account, bundles)

    print(f"Issued:  {len(report.issued)}")
    for domain in report.issued:
        print(f"  {domain}")
    print(f"Skipped: {len(report.skipped)} (already issued)")
