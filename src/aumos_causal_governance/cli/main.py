"""CLI entry point for aumos-causal-governance.

Invoked as::

    causal-gov [OPTIONS] COMMAND [ARGS]...

or during development::

    python -m aumos_causal_governance.cli.main

Commands
--------
- version   Show version information
- validate  Validate AllowancePolicy / UpgradeAllowance files
- check     Decide one admission request against policies and objects
- trace     Show the allowances and causal traces an object carries

Request files for ``check`` are YAML (or JSON) mappings::

    uid: r-1
    operation: UPDATE
    subject: {username: alice, groups: [dev], mayInitiate: false}
    resource: replicasets
    object: {...}
    oldObject: {...}

A request with an ``external: {system: {...}, verb: create}`` section is
decided as an external-system request for ``object`` instead.
"""
from __future__ import annotations

import sys
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import click
import yaml
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from aumos_causal_governance.errors import CausalGovernanceError, PolicyConfigError

console = Console()
err_console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Root command group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="aumos-causal-governance")
def cli() -> None:
    """Causal Governance CLI: policy validation, admission checks and traces."""


# ---------------------------------------------------------------------------
# version
# ---------------------------------------------------------------------------


@cli.command(name="version")
def version_command() -> None:
    """Show detailed version information."""
    from aumos_causal_governance import __version__

    console.print(
        Panel(
            f"[bold]aumos-causal-governance[/bold]  v[cyan]{__version__}[/cyan]\n"
            "Causal admission control for controller hierarchies.",
            title="Version",
            border_style="blue",
        )
    )


# ---------------------------------------------------------------------------
# validate
# ---------------------------------------------------------------------------


@cli.command(name="validate")
@click.argument("policy_files", nargs=-1, required=True, type=click.Path(exists=True))
def validate_command(policy_files: tuple[str, ...]) -> None:
    """Validate POLICY_FILES and list the policies they define."""
    from aumos_causal_governance.policies.loader import PolicyLoader

    try:
        registry = PolicyLoader().load_many(policy_files)
    except PolicyConfigError as exc:
        err_console.print(f"[red]Invalid policy:[/red] {escape(str(exc))}")
        sys.exit(1)

    table = Table(title="Allowance Policies", box=box.SIMPLE)
    table.add_column("Policy", style="cyan")
    table.add_column("Kind", style="magenta")
    table.add_column("Rules", justify="right")
    table.add_column("Initiators")
    for policy in registry.policies:
        initiators = ", ".join(s.name for s in policy.subjects if s.may_initiate) or "-"
        table.add_row(policy.name, policy.kind_key, str(len(policy.rules)), initiators)
    console.print(table)

    if registry.upgrade_allowances:
        upgrades = Table(title="Upgrade Allowances", box=box.SIMPLE)
        upgrades.add_column("Name", style="cyan")
        upgrades.add_column("Subject", style="magenta")
        upgrades.add_column("Targets")
        for upgrade in registry.upgrade_allowances:
            targets = ", ".join(str(e.target_key()) for e in upgrade.policies) or "-"
            upgrades.add_row(upgrade.name, upgrade.subject, targets)
        console.print(upgrades)

    summary = registry.summary()
    console.print(
        f"[green]Valid[/green]: {summary['policy_count']} policies, "
        f"{summary['rule_count']} rules, "
        f"{summary['upgrade_allowance_count']} upgrade allowances."
    )


# ---------------------------------------------------------------------------
# check
# ---------------------------------------------------------------------------


@cli.command(name="check")
@click.option(
    "--policies",
    "-p",
    "policy_files",
    multiple=True,
    type=click.Path(exists=True),
    help="AllowancePolicy / UpgradeAllowance YAML file (repeatable).",
)
@click.option(
    "--request",
    "-r",
    "request_file",
    required=True,
    type=click.Path(exists=True),
    help="Admission request YAML/JSON file.",
)
@click.option(
    "--objects",
    "-o",
    "objects_file",
    default=None,
    type=click.Path(exists=True),
    help="YAML file of existing objects (parents are looked up here).",
)
@click.option(
    "--config",
    "-c",
    "config_path",
    default=None,
    type=click.Path(exists=True),
    help="Engine configuration YAML.",
)
def check_command(
    policy_files: tuple[str, ...],
    request_file: str,
    objects_file: str | None,
    config_path: str | None,
) -> None:
    """Decide one admission request and print the decision."""
    from aumos_causal_governance.config.loader import ConfigLoader
    from aumos_causal_governance.convenience import CausalGovernor
    from aumos_causal_governance.policies.loader import PolicyLoader

    try:
        loader = ConfigLoader()
        config = loader.load(Path(config_path)) if config_path else loader.defaults()
        registry = PolicyLoader().load_many([*config.policy_files, *policy_files])
        governor = CausalGovernor(config=config, registry=registry)
        if objects_file:
            governor.store.load_yaml(objects_file)
        document = _read_document(Path(request_file))
    except (CausalGovernanceError, OSError, yaml.YAMLError, ValueError) as exc:
        err_console.print(f"[red]Error:[/red] {escape(str(exc))}")
        sys.exit(2)

    try:
        if "external" in document:
            decision = governor.admit_external(_external_request(document))
        else:
            decision = governor.admit(_admission_request(document))
    except (KeyError, TypeError, ValueError) as exc:
        err_console.print(f"[red]Invalid request:[/red] {escape(str(exc))}")
        sys.exit(2)

    status_str = "[green]ACCEPT[/green]" if decision.allowed else "[red]REJECT[/red]"
    console.print(Panel(status_str, title="Admission Decision", border_style="blue"))
    console.print(f"  Basis: [cyan]{decision.basis.value}[/cyan]")
    console.print(f"  Reason: {escape(decision.reason)}")
    if decision.fingerprint:
        console.print(f"  Fingerprint: [magenta]{decision.fingerprint}[/magenta]")
    for warning in decision.warnings:
        console.print(f"  [yellow]Warning:[/yellow] {escape(warning)}")

    if decision.justifications:
        console.print(_allowance_table("Justifications", decision.justifications))
    if decision.issued:
        console.print(_allowance_table("Issued Allowances", decision.issued))

    sys.exit(0 if decision.allowed else 1)


# ---------------------------------------------------------------------------
# trace
# ---------------------------------------------------------------------------


@cli.command(name="trace")
@click.argument("object_file", type=click.Path(exists=True))
@click.option(
    "--annotation-prefix",
    default=None,
    help="Annotation prefix of the allowance records.",
)
def trace_command(object_file: str, annotation_prefix: str | None) -> None:
    """Show the allowances carried by the object in OBJECT_FILE."""
    from aumos_causal_governance.engine.consumption import is_consumed
    from aumos_causal_governance.model.objects import ObjectRef
    from aumos_causal_governance.storage.codec import AllowanceCodec

    try:
        obj = _read_document(Path(object_file))
    except (OSError, yaml.YAMLError, ValueError) as exc:
        err_console.print(f"[red]Error:[/red] {escape(str(exc))}")
        sys.exit(2)

    codec = AllowanceCodec(annotation_prefix) if annotation_prefix else AllowanceCodec()
    ref = ObjectRef.from_object(obj)
    decoded = codec.read_allowances(obj)
    fingerprint = codec.read_fingerprint(obj)

    console.print(
        f"[bold]{ref.describe()}[/bold]  generation [cyan]{ref.generation}[/cyan]  "
        f"observedGeneration [cyan]{ref.observed_generation}[/cyan]"
    )
    if fingerprint:
        console.print(f"  Fingerprint: [magenta]{fingerprint}[/magenta]")
    for warning in decoded.warnings:
        console.print(f"  [yellow]Warning:[/yellow] {escape(warning)}")

    if not decoded.allowances:
        console.print("[yellow]No allowances.[/yellow]")
        return

    table = Table(title="Allowances", box=box.SIMPLE)
    table.add_column("Target", style="cyan")
    table.add_column("Verbs", style="magenta")
    table.add_column("Initiator")
    table.add_column("Trace")
    table.add_column("State")
    for allowance in decoded.allowances:
        state = "consumed" if is_consumed(allowance, ref) else "active"
        table.add_row(
            allowance.target,
            ", ".join(sorted(allowance.grant.verbs)) or "-",
            allowance.initiator,
            _render_trace(allowance),
            state,
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _read_document(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping")
    return data


def _subject(raw: object) -> Any:
    from aumos_causal_governance.model.objects import Subject

    if isinstance(raw, str):
        return Subject.from_username(raw)
    if not isinstance(raw, Mapping):
        raise ValueError("subject must be a username or a mapping")
    return Subject.from_username(
        str(raw["username"]),
        groups=list(raw.get("groups") or []),
        may_initiate=bool(raw.get("mayInitiate", False)),
    )


def _admission_request(document: Mapping[str, Any]) -> Any:
    from aumos_causal_governance.engine.decision import AdmissionRequest
    from aumos_causal_governance.model.objects import Operation

    return AdmissionRequest(
        subject=_subject(document["subject"]),
        operation=Operation(str(document["operation"]).upper()),
        object=document.get("object"),
        old_object=document.get("oldObject"),
        fingerprint=document.get("fingerprint"),
        resource=document.get("resource"),
        uid=document.get("uid"),
    )


def _external_request(document: Mapping[str, Any]) -> Any:
    from aumos_causal_governance.engine.decision import ExternalRequest

    external = document["external"]
    return ExternalRequest(
        subject=_subject(document["subject"]),
        object=document["object"],
        system={str(k): str(v) for k, v in dict(external["system"]).items()},
        verb=str(external["verb"]),
        uid=document.get("uid"),
    )


def _render_trace(allowance: Any) -> str:
    return " -> ".join(f"{hop.kind}/{hop.name}@{hop.generation} ({hop.field})" for hop in allowance.trace)


def _allowance_table(title: str, allowances: Any) -> Table:
    table = Table(title=title, box=box.SIMPLE)
    table.add_column("Target", style="cyan")
    table.add_column("Verbs", style="magenta")
    table.add_column("Generation", justify="right")
    table.add_column("Initiator")
    table.add_column("Trace")
    for allowance in allowances:
        table.add_row(
            allowance.target,
            ", ".join(sorted(allowance.grant.verbs)) or "-",
            str(allowance.generation),
            allowance.initiator,
            _render_trace(allowance),
        )
    return table


if __name__ == "__main__":
    cli()
