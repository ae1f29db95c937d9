"""
Shared fixtures: on-disk OpenCode stores built in tmp_path.

Ids are zero-padded so stored order (ascending id) matches creation order.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from session_repair.services.repair import SessionRepairService

SESSION_ID = 'ses_0001'
PROJECT_ID = 'prj_0001'

GLM = ('zhipuai', 'glm-4.6')
CLAUDE = ('anthropic', 'claude-sonnet-4-5')


def signature_error(reference: str | None = 'messages.1.content.0') -> dict[str, Any]:
    """Error descriptor as stored after a provider rejected a thinking block signature."""
    prefix = f'{reference}: ' if reference else ''
    return {
        'name': 'APIError',
        'data': {
            'message': f'{prefix}Invalid `signature` in `thinking` block',
            'statusCode': 400,
            'isRetryable': False,
        },
    }


class StoreBuilder:
    """Writes session, message and part documents the way the front-end lays them out."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.storage = root / 'storage'
        for collection in ('session', 'message', 'part'):
            (self.storage / collection).mkdir(parents=True, exist_ok=True)

    def _write(self, path: Path, content: dict[str, Any]) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(content, indent=2))
        return path

    def session(self, session_id: str = SESSION_ID, title: str = 'Refactor parser', **extra: Any) -> Path:
        content = {
            'id': session_id,
            'projectID': PROJECT_ID,
            'directory': '/home/dev/project',
            'title': title,
            'version': '0.15.0',
            'time': {'created': 1760000000000, 'updated': 1760000000000},
            **extra,
        }
        return self._write(self.storage / 'session' / PROJECT_ID / f'{session_id}.json', content)

    def message(
        self,
        message_id: str,
        role: str,
        *,
        session_id: str = SESSION_ID,
        model: tuple[str, str] | None = None,
        error: dict[str, Any] | None = None,
        **extra: Any,
    ) -> Path:
        content: dict[str, Any] = {
            'id': message_id,
            'sessionID': session_id,
            'role': role,
            'time': {'created': 1760000000000},
            **extra,
        }
        if model is not None:
            content['providerID'], content['modelID'] = model
        if error is not None:
            content['error'] = error
        return self._write(self.storage / 'message' / session_id / f'{message_id}.json', content)

    def part(
        self,
        message_id: str,
        part_id: str,
        type: str,
        *,
        session_id: str = SESSION_ID,
        text: str | None = None,
        **extra: Any,
    ) -> Path:
        content: dict[str, Any] = {
            'id': part_id,
            'messageID': message_id,
            'sessionID': session_id,
            'type': type,
            **extra,
        }
        if type == 'reasoning':
            content['text'] = text or 'Let me think about this.'
            content.setdefault('metadata', {'anthropic': {'signature': f'sig-{part_id}'}})
        elif text is not None:
            content['text'] = text
        return self._write(self.storage / 'part' / message_id / f'{part_id}.json', content)

    def snapshot(self) -> dict[str, bytes]:
        """Every file under storage/, relative path -> bytes."""
        return {
            path.relative_to(self.root).as_posix(): path.read_bytes()
            for path in sorted(self.storage.rglob('*'))
            if path.is_file()
        }

    def read(self, relative: str) -> dict[str, Any]:
        return json.loads((self.root / relative).read_text())

    def exists(self, relative: str) -> bool:
        return (self.root / relative).exists()


def build_signature_session(builder: StoreBuilder, reference: str | None = 'messages.1.content.0') -> None:
    """
    Three-message session blocked by a GLM thinking block:

        0 msg_0001 user       prt_0001 text
        1 msg_0002 assistant  prt_0002 reasoning, prt_0003 text   (GLM)
        2 msg_0003 assistant  error descriptor                    (Claude)
    """
    builder.session()
    builder.message('msg_0001', 'user')
    builder.part('msg_0001', 'prt_0001', 'text', text='Refactor the parser')
    builder.message('msg_0002', 'assistant', model=GLM)
    builder.part('msg_0002', 'prt_0002', 'reasoning', metadata={'zhipuai': {'signature': 'glm-sig'}})
    builder.part('msg_0002', 'prt_0003', 'text', text='Done.')
    builder.message('msg_0003', 'assistant', model=CLAUDE, error=signature_error(reference))


@pytest.fixture
def builder(tmp_path: Path) -> StoreBuilder:
    return StoreBuilder(tmp_path / 'opencode')


@pytest.fixture
def signature_session(builder: StoreBuilder) -> StoreBuilder:
    build_signature_session(builder)
    return builder


@pytest.fixture
def service(builder: StoreBuilder) -> SessionRepairService:
    return SessionRepairService(builder.root)
