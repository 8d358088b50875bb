"""Shipwright pipeline stages.

Usage::

    from shipwright.stages import STAGE_ORDER, BuildStage

    stage = BuildStage(CommandBuilder(pipeline.build))
    result = stage.run_stage(ctx)
"""

from __future__ import annotations

from shipwright.models.runs import StageName
from shipwright.stages.base import BaseStage, StageContext
from shipwright.stages.build import Builder, BuildProduct, BuildStage, CommandBuilder
from shipwright.stages.deploy import DeployStage
from shipwright.stages.package import PackageStage
from shipwright.stages.rollback import RollbackStage
from shipwright.stages.test import CommandTestRunner, TestRunner, TestStage
from shipwright.stages.verify import VerifyStage

# Ordered list matching the pipeline execution order.  Rollback is a
# recovery branch, not a step.
STAGE_ORDER: list[StageName] = [
    StageName.BUILD,
    StageName.TEST,
    StageName.PACKAGE,
    StageName.DEPLOY,
    StageName.VERIFY,
]

__all__ = [
    "STAGE_ORDER",
    "BaseStage",
    "StageContext",
    "Builder",
    "BuildProduct",
    "CommandBuilder",
    "BuildStage",
    "TestRunner",
    "CommandTestRunner",
    "TestStage",
    "PackageStage",
    "DeployStage",
    "VerifyStage",
    "RollbackStage",
]
