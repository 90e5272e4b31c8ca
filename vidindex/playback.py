"""Default playback URL collaborator.

The search layer only ever calls ``resolver(source_id, segment_id)``; signing
or minting real URLs is the delivery layer's job. This resolver fills in a
path template that the delivery layer is expected to serve.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from .config import playback

UrlResolver = Callable[[str, str], str]


@dataclass(frozen=True)
class TemplateUrlResolver:
    wedding_id: str
    template: str = playback.url_template

    def __call__(self, source_id: str, segment_id: str) -> str:
        return self.template.format(
            wedding_id=self.wedding_id,
            source_id=source_id,
            segment_id=segment_id,
        )
