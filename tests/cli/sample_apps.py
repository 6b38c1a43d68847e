"""Small applications the CLI tests start by reference."""

from __future__ import annotations

from dataclasses import dataclass

import click
from pydantic import BaseModel

from apprun import RunContext, RunnerConfig, Runtime


class SampleSettings(BaseModel):
    greeting: str = "hello"
    fail: bool = False


class RequiredSettings(BaseModel):
    token: str


@dataclass
class RequiredPlainSettings:
    token: str


class EchoApp:
    config_class = SampleSettings

    def __init__(self, cfg: RunnerConfig[SampleSettings], rt: Runtime) -> None:
        self.settings = cfg.app

    async def run(self, context: RunContext) -> None:
        if self.settings.fail:
            raise RuntimeError("asked to fail")
        click.echo(" ".join([self.settings.greeting, *context.args]))


def plain_factory(cfg: RunnerConfig[SampleSettings], rt: Runtime) -> EchoApp:
    return EchoApp(cfg, rt)
