import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

import click
from dotenv import load_dotenv

load_dotenv()

from tabpilot.config import CONFIG


def load_script(script_path: str | None, actions: tuple[str, ...]) -> list[dict[str, Any]]:
	"""Read computer tool inputs from a JSON file (a list of objects) and/or --action flags."""
	steps: list[dict[str, Any]] = []
	if script_path:
		data = json.loads(Path(script_path).read_text(encoding='utf-8'))
		if not isinstance(data, list) or not all(isinstance(step, dict) for step in data):
			raise click.BadParameter('script must be a JSON list of tool inputs', param_hint='--script')
		steps.extend(data)
	for raw in actions:
		try:
			step = json.loads(raw)
		except json.JSONDecodeError as e:
			raise click.BadParameter(f'{raw!r} is not valid JSON: {e}', param_hint='--action') from e
		if not isinstance(step, dict):
			raise click.BadParameter(f'{raw!r} must be a JSON object', param_hint='--action')
		steps.append(step)
	return steps


async def run_script(
	cdp_url: str,
	steps: list[dict[str, Any]],
	task: str,
	target_id: str | None = None,
	copilot: bool = False,
) -> int:
	"""Connect to the browser, replay the steps through an AgentLoop and print a summary."""
	from tabpilot.agent.companion import EventBusCompanion
	from tabpilot.agent.policy import ScriptedPolicy
	from tabpilot.agent.service import AgentLoop
	from tabpilot.agent.views import AgentSettings
	from tabpilot.browser.session import ProtocolSession
	from tabpilot.browser.transport import CDPClientTransport

	transport = CDPClientTransport(cdp_url)
	await transport.connect()
	session = ProtocolSession(transport=transport)
	try:
		if not await session.initialize(target_id):
			click.echo(f'❌ Could not attach to a tab at {cdp_url}', err=True)
			return 1

		companion = EventBusCompanion(session.event_bus)
		agent = AgentLoop(
			policy=ScriptedPolicy.from_actions(steps),
			session=session,
			companion=companion,
			settings=AgentSettings(copilot=copilot),
		)
		state = await agent.run(task)

		for message in agent.trajectory.messages:
			click.echo(f'{message["role"]:>9}: {_summarize(message["content"])}')
		if state.error:
			click.echo(f'❌ {state.error}', err=True)
			return 1
		click.echo(f'✅ Finished after {state.n_steps} step(s)')
		return 0
	finally:
		await session.cleanup()
		await transport.close()
		await session.event_bus.stop(clear=True, timeout=5)


def _summarize(content: Any) -> str:
	if isinstance(content, str):
		return content
	parts = []
	for block in content:
		block_type = block.get('type')
		if block_type == 'text':
			parts.append(block['text'])
		elif block_type == 'tool_use':
			parts.append(f'🦾 {json.dumps(block["input"])}')
		elif block_type == 'tool_result':
			inner = block['content'][0] if block['content'] else {}
			parts.append('📸 <screenshot>' if inner.get('type') == 'image' else f'📝 {inner.get("text", "")}')
	return ' | '.join(parts)


@click.command()
@click.option('--cdp-url', type=str, default=None, help='Chrome DevTools endpoint (e.g. http://localhost:9222)')
@click.option('--target-id', type=str, default=None, help='Tab to control, defaults to the foreground tab')
@click.option('--script', 'script_path', type=click.Path(exists=True, dir_okay=False), help='JSON list of tool inputs')
@click.option('--action', 'actions', multiple=True, help='One tool input as JSON, e.g. \'{"action": "screenshot"}\'')
@click.option('--task', type=str, default='Replay scripted actions', help='Task text recorded as the first message')
@click.option('--copilot', is_flag=True, help='Hand actions to the companion UI instead of performing them')
@click.option('--debug', is_flag=True, help='Enable verbose logging')
def main(
	cdp_url: str | None,
	target_id: str | None,
	script_path: str | None,
	actions: tuple[str, ...],
	task: str,
	copilot: bool,
	debug: bool,
):
	"""Replay computer-use actions against a running Chrome tab."""
	steps = load_script(script_path, actions)
	if not steps:
		raise click.UsageError('Nothing to do, pass --script and/or --action')

	if debug:
		os.environ['TABPILOT_LOGGING_LEVEL'] = 'debug'

	from tabpilot.logging_config import setup_logging

	setup_logging(force_setup=True)
	logging.getLogger('tabpilot').debug('🔧 tabpilot CLI starting')

	exit_code = asyncio.run(run_script(cdp_url or CONFIG.TABPILOT_CDP_URL, steps, task, target_id, copilot))
	sys.exit(exit_code)


if __name__ == '__main__':
	main()
