"""Security commands — inspect the classifier and the policy table."""

from __future__ import annotations

import json

import click

from spirit.cli.formatters import build_table, get_console, risk_text, yes_no
from spirit.config import SecurityConfig
from spirit.security.sensitivity import OperationCategory, classify, resolve_policies


def _want_json(ctx: click.Context, local_flag: bool) -> bool:
    return local_flag or bool((ctx.obj or {}).get("json"))


@click.command("classify")
@click.argument("text")
@click.option("--json", "json_output", is_flag=True, help="Structured JSON output")
@click.pass_context
def classify_cmd(ctx: click.Context, text: str, json_output: bool) -> None:
    """Show how TEXT would be classified and which policy applies."""
    policies = resolve_policies(SecurityConfig().sensitivity_overrides)
    verdict = classify(text)
    policy = policies[verdict.category]

    if _want_json(ctx, json_output):
        click.echo(json.dumps({
            "command": text,
            "is_sensitive": verdict.is_sensitive,
            "category": verdict.category.value,
            "reason": verdict.reason,
            "level": policy.level.value,
            "require_confirm": policy.require_confirm,
            "timeout_seconds": policy.timeout_seconds,
        }, ensure_ascii=False))
        return

    console = get_console(no_color=(ctx.obj or {}).get("no_color", False))
    if not verdict.is_sensitive:
        console.print(f"[green]not sensitive[/green] · runs without confirmation: {text}")
        return
    console.print(build_table(
        "Classification",
        ["Command", "Category", "Risk", "Confirm", "Timeout", "Reason"],
        [[
            text,
            verdict.category.value,
            risk_text(policy.level),
            yes_no(policy.require_confirm),
            f"{policy.timeout_seconds:g}s",
            verdict.reason,
        ]],
    ))


@click.command("policies")
@click.option("--json", "json_output", is_flag=True, help="Structured JSON output")
@click.pass_context
def policies_cmd(ctx: click.Context, json_output: bool) -> None:
    """Print the per-category approval policy table."""
    policies = resolve_policies(SecurityConfig().sensitivity_overrides)

    if _want_json(ctx, json_output):
        click.echo(json.dumps({
            category.value: {
                "level": policy.level.value,
                "require_confirm": policy.require_confirm,
                "timeout_seconds": policy.timeout_seconds,
                "description": policy.description,
            }
            for category, policy in policies.items()
        }, ensure_ascii=False))
        return

    console = get_console(no_color=(ctx.obj or {}).get("no_color", False))
    rows = []
    for category in OperationCategory:
        policy = policies[category]
        rows.append([
            category.value,
            risk_text(policy.level),
            yes_no(policy.require_confirm),
            f"{policy.timeout_seconds:g}s",
            policy.description,
        ])
    console.print(build_table(
        "Approval policies",
        ["Category", "Risk", "Confirm", "Timeout", "Description"],
        rows,
    ))
