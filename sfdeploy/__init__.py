"""Deploy Apex and component bundles to a Salesforce org and report the outcome"""
from sfdeploy.deployment.facade import deploy
from sfdeploy.deployment.models import DeployKind, DeployOutcome, DeployRequest, Diagnostic, JobState

__all__ = ["deploy", "DeployKind", "DeployOutcome", "DeployRequest", "Diagnostic", "JobState"]
