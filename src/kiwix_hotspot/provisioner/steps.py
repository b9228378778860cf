"""The provisioning steps, in the order the pipeline runs them.

Each step checks the host first and acts only when the observed state
differs from the desired one, so running the whole pipeline twice against an
unchanged host changes nothing the second time.
"""
from __future__ import annotations

from pathlib import Path

from ..config import PackageRequirement, ProvisionConfig
from ..errors import (
    ConfigurationWriteError,
    DependencyMissingError,
    HostEnvironmentError,
    PrivilegeError,
)
from ..host import ServiceAction, SystemObserver
from ..providers import set_assignment
from ..templates import TemplateRenderError
from .models import ProvisionContext, ProvisionStep, StepOutcome
from .reconcile import reconcile

ENVIRONMENT_TEMPLATE = "default/environment.j2"
UNIT_TEMPLATE = "systemd/service.j2"
# RaspAP serves its admin UI on the access point's gateway address.
RASPAP_ADMIN_URL = "http://10.3.141.1"


def check_preconditions(ctx: ProvisionContext) -> StepOutcome:
    """Fail before any mutation when the host cannot be provisioned."""
    observer = ctx.observer
    if not observer.is_privileged():
        message = "Run as root: sudo kiwix-hotspot"
        if not ctx.dry_run:
            raise PrivilegeError(message)
        ctx.warn(f"Not running as root; real runs will fail. {message}")

    apt_bin = ctx.config.apt.apt_bin
    if not observer.binary_on_path(apt_bin):
        raise HostEnvironmentError(
            f"{apt_bin} not found. This tool expects Debian or Raspberry Pi OS."
        )
    systemctl_bin = ctx.config.systemd.systemctl_bin
    if not observer.binary_on_path(systemctl_bin):
        raise HostEnvironmentError(
            f"{systemctl_bin} not found. This tool expects a systemd-based OS."
        )
    return StepOutcome.unchanged("root, package manager and service manager available")


def _requirement_satisfied(observer: SystemObserver, requirement: PackageRequirement) -> bool:
    if requirement.binary:
        return observer.binary_on_path(requirement.binary)
    return observer.package_installed(requirement.name)


def ensure_packages(ctx: ProvisionContext) -> StepOutcome:
    """Install the packages whose binaries (or package records) are missing."""
    observer = ctx.observer
    missing = [
        requirement
        for requirement in ctx.config.packages
        if not _requirement_satisfied(observer, requirement)
    ]
    if not missing:
        return StepOutcome.unchanged("all required packages present")

    names = [requirement.name for requirement in missing]
    joined = ", ".join(names)
    if ctx.dry_run:
        return StepOutcome.planned(f"install {joined}")

    ctx.info("Refreshing package index...")
    ctx.mutator.refresh_package_index()
    ctx.info(f"Installing {joined}...")
    ctx.mutator.install_packages(names)

    ctx.info("Verifying installation...")
    for requirement in missing:
        if requirement.binary and not observer.binary_on_path(requirement.binary):
            raise DependencyMissingError(
                f"{requirement.binary} was not found after installing {requirement.name}."
            )
    return StepOutcome.changed(f"installed {joined}")


def ensure_content_directory(ctx: ProvisionContext) -> StepOutcome:
    """Create the content directory when it does not exist yet."""
    path = ctx.config.content_dir
    if ctx.observer.directory_exists(path):
        return StepOutcome.unchanged(f"{path} exists")
    if ctx.dry_run:
        return StepOutcome.planned(f"create {path}")
    ctx.info(f"Creating content directory: {path}")
    ctx.mutator.ensure_directory(path)
    return StepOutcome.changed(f"created {path}")


def service_template_context(config: ProvisionConfig) -> dict[str, object]:
    """Return the variables shared by the environment and unit templates."""
    return {
        "port": config.port,
        "content_dir": str(config.content_dir),
        "content_pattern": config.content_pattern,
        "content_glob": config.content_glob,
        "environment_file": str(config.environment_file),
        "server_binary": str(config.server_binary),
        "service_name": config.service_name,
    }


def render_service_definition(ctx: ProvisionContext) -> dict[Path, str]:
    """Render the desired environment file and unit, keyed by their paths."""
    config = ctx.config
    context = service_template_context(config)
    try:
        return {
            config.environment_file: ctx.templates.render_to_string(
                ENVIRONMENT_TEMPLATE, context
            ),
            config.unit_file: ctx.templates.render_to_string(UNIT_TEMPLATE, context),
        }
    except TemplateRenderError as exc:
        raise ConfigurationWriteError(str(exc)) from exc


def sync_service_definition(ctx: ProvisionContext) -> StepOutcome:
    """Write the environment file and unit when they differ, then enable."""
    config = ctx.config
    desired = render_service_definition(ctx)
    stale = {
        path: text
        for path, text in desired.items()
        if ctx.observer.read_text(path) != text
    }
    unit_changed = config.unit_file in stale
    enabled = ctx.observer.service_enabled(config.service_name)
    ctx.state.definition_changed = bool(stale)

    actions = [f"write {path}" for path in stale]
    if unit_changed:
        actions.append("daemon-reload")
    if not enabled:
        actions.append(f"enable {config.service_name}")
    if not actions:
        return StepOutcome.unchanged("service definition up to date")
    if ctx.dry_run:
        return StepOutcome.planned("; ".join(actions))

    if stale:
        ctx.info(f"Creating/updating {config.service_name} service definition...")
    for path, text in stale.items():
        ctx.mutator.write_file(path, text, mode=0o644)
    if unit_changed:
        ctx.mutator.daemon_reload()
    if not enabled:
        ctx.info(f"Enabling {config.service_name} at boot...")
        ctx.mutator.control_service(ServiceAction.ENABLE, config.service_name)
    return StepOutcome.changed("; ".join(actions))


def reconcile_service(ctx: ProvisionContext) -> StepOutcome:
    """Serve any content already on disk."""
    return reconcile(ctx, refresh=ctx.state.definition_changed)


def acquire_content(ctx: ProvisionContext) -> StepOutcome:
    """Offer each configured archive for download, skipping present ones."""
    config = ctx.config
    if not config.archives:
        return StepOutcome.skipped("no archive sources configured")

    offered: list[str] = []
    for source in config.archives:
        path = config.archive_path(source)
        if ctx.observer.file_exists(path):
            ctx.info(f"{source.title} ZIM already present, skipping: {path}")
            continue
        if ctx.dry_run:
            offered.append(source.name)
            continue
        if not ctx.confirmations.interactive:
            ctx.info(f"No terminal attached; not downloading {source.title} ZIM.")
            continue
        if not ctx.confirmations.confirm(f"Do you want to download the {source.title} ZIM?"):
            continue

        ctx.info("Downloading ZIM (this can take a while)...")
        ctx.info(f"Source: {source.url}")
        ctx.info(f"Destination: {path}")
        result = ctx.mutator.download(source.url, path)
        if result.resumed_from:
            ctx.info(f"Resumed from byte {result.resumed_from}.")
        ctx.state.fetched_archives.append(source.name)
        ctx.state.content_fetched = True

    if ctx.state.fetched_archives:
        return StepOutcome.changed(f"downloaded {', '.join(ctx.state.fetched_archives)}")
    if offered:
        return StepOutcome.planned(f"offer download of {', '.join(offered)}")
    return StepOutcome.unchanged("no new archives requested")


def reconcile_after_download(ctx: ProvisionContext) -> StepOutcome:
    """Pick up newly downloaded archives."""
    if not ctx.state.content_fetched:
        return StepOutcome.skipped("no new content downloaded")
    ctx.info(f"New ZIM(s) downloaded; refreshing {ctx.config.service_name}...")
    return reconcile(ctx, refresh=True)


def enable_access_point(ctx: ProvisionContext) -> StepOutcome:
    """Install RaspAP and switch the device into access-point mode."""
    ap = ctx.config.access_point
    if ctx.dry_run:
        return StepOutcome.planned("offer RaspAP access-point installation")
    if not ctx.confirmations.interactive:
        return StepOutcome.skipped("no terminal attached")
    question = (
        "Do you want to install RaspAP and turn this device into a Wi-Fi access point? "
        "This can disconnect the session you are using right now."
    )
    if not ctx.confirmations.confirm(question):
        return StepOutcome.skipped("declined")

    ctx.warn("Access-point mode is about to be activated; your connection may drop.")
    ctx.info(f"SSID: {ap.ssid}")
    ctx.info(f"Wi-Fi passphrase: {ap.passphrase}")
    ctx.info(
        f"RaspAP admin: {RASPAP_ADMIN_URL} "
        f"(user {ap.admin_user}, password {ap.admin_password})"
    )
    ctx.info(f"Kiwix will be reachable on port {ctx.config.port}.")

    transfer_tool = ap.transfer_package
    if not ctx.observer.binary_on_path(transfer_tool):
        ctx.info(f"{transfer_tool} not found; installing {transfer_tool}...")
        ctx.mutator.install_packages([transfer_tool])
        if not ctx.observer.binary_on_path(transfer_tool):
            raise DependencyMissingError(f"{transfer_tool} was not found after installation.")

    ctx.info(f"Running RaspAP installer from {ap.installer_url}...")
    ctx.mutator.run_access_point_installer(ap.installer_url, list(ap.installer_args))

    current = ctx.observer.read_text(ap.config_file)
    if current is not None:
        updated = set_assignment(current, "ssid", ap.ssid)
        if updated != current:
            ctx.info(f"Setting SSID to {ap.ssid} in {ap.config_file}")
            ctx.mutator.write_file(ap.config_file, updated, mode=0o600)

    ctx.mutator.control_service(ServiceAction.ENABLE, ap.service)
    ctx.mutator.control_service(ServiceAction.RESTART, ap.service)
    return StepOutcome.changed(f"RaspAP installed; {ap.service} restarted with SSID {ap.ssid}")


def default_steps() -> tuple[ProvisionStep, ...]:
    """Return the pipeline in dependency order."""
    return (
        ProvisionStep("preconditions", "Check privileges and host tooling", check_preconditions),
        ProvisionStep("packages", "Install the content server packages", ensure_packages),
        ProvisionStep(
            "content-directory", "Create the content directory", ensure_content_directory
        ),
        ProvisionStep("service-definition", "Sync the service unit", sync_service_definition),
        ProvisionStep("service", "Serve existing content", reconcile_service),
        ProvisionStep("content", "Download optional archives", acquire_content),
        ProvisionStep("service-refresh", "Serve new content", reconcile_after_download),
        ProvisionStep("access-point", "Enable access-point mode", enable_access_point),
    )


__all__ = [
    "acquire_content",
    "check_preconditions",
    "default_steps",
    "enable_access_point",
    "ensure_content_directory",
    "ensure_packages",
    "reconcile_after_download",
    "reconcile_service",
    "render_service_definition",
    "service_template_context",
    "sync_service_definition",
]
