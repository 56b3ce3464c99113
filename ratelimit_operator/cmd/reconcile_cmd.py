"""
Run a single reconciliation pass of a RateLimiter
"""
# Standard
from typing import List, Optional
import argparse
import os
import sys

# Third Party
import yaml

# First Party
import alog

# Local
from .. import config, constants
from ..deploy_manager import DeployManagerBase, DryRunDeployManager
from ..reconcile import RateLimiterReconciler
from ..resources import CHILD_KINDS, CONFIG_MAP
from .base import CmdBase

log = alog.use_channel("MAIN")


class ReconcileCmd(CmdBase):
    __doc__ = __doc__

    name = "reconcile"

    ## Interface ##

    def add_args(self, runtime_args: argparse._ArgumentGroup):
        runtime_args.add_argument(
            "--name",
            "-n",
            default=None,
            help="The name of the RateLimiter to reconcile",
        )
        runtime_args.add_argument(
            "--namespace",
            "-N",
            default="default",
            help="The namespace of the RateLimiter to reconcile",
        )
        runtime_args.add_argument(
            "--cr",
            "-c",
            default=None,
            help="(dry run) A RateLimiter manifest yaml to reconcile",
        )
        runtime_args.add_argument(
            "--resource_dir",
            "-r",
            default=None,
            help="(dry run) Path to a directory of yaml files that should exist in the cluster",
        )

    def cmd(self, args: argparse.Namespace) -> int:
        # Validate args
        assert args.cr is None or (
            config.dry_run and os.path.isfile(args.cr)
        ), "Can only specify --cr with dry run and it must point to a valid file"
        assert args.resource_dir is None or (
            config.dry_run and os.path.isdir(args.resource_dir)
        ), "Can only specify --resource_dir with dry run and it must point to a valid directory"

        name, namespace = args.name, args.namespace
        deploy_manager = None
        if config.dry_run:
            resources = self._parse_resource_dir(args.resource_dir)
            if args.cr:
                log.info("Applying CR [%s]", args.cr)
                with open(args.cr, encoding="utf-8") as handle:
                    cr_manifest = yaml.safe_load(handle)
                metadata = cr_manifest.setdefault("metadata", {})
                metadata.setdefault("namespace", namespace)
                name = name or metadata.get("name")
                namespace = metadata["namespace"]
                log.debug3(cr_manifest)
                resources.append(cr_manifest)
            deploy_manager = DryRunDeployManager(resources=resources)
        assert name, "Must specify --name or a --cr holding metadata.name"

        result = RateLimiterReconciler(deploy_manager=deploy_manager).reconcile_once(
            name, namespace
        )
        log.info(
            "Reconcile finished. requeue: %s, error: %s",
            result.requeue,
            result.exception,
        )

        if deploy_manager is not None:
            self._dump_objects(deploy_manager, name, namespace)
        return 1 if result.exception is not None else 0

    ## Impl ##

    @staticmethod
    def _parse_resource_dir(resource_dir: Optional[str]) -> List[dict]:
        """If given, this will parse all yaml files found in the given directory"""
        all_resources = []
        if resource_dir is not None:
            for fname in sorted(os.listdir(resource_dir)):
                if fname.endswith(".yaml") or fname.endswith(".yml"):
                    resource_path = os.path.join(resource_dir, fname)
                    log.debug3("Reading resource file [%s]", resource_path)
                    with open(resource_path, encoding="utf-8") as handle:
                        all_resources.extend(
                            resource for resource in yaml.safe_load_all(handle) if resource
                        )
        return all_resources

    @staticmethod
    def _dump_objects(deploy_manager: DeployManagerBase, name: str, namespace: str):
        """Print the RateLimiter and its children as found after the pass"""
        _, manifest = deploy_manager.get_object_current_state(
            kind=constants.RATE_LIMITER_KIND, name=name, namespace=namespace
        )
        if manifest is None:
            return
        # Child names are built from the CR name so that a CR which fails to
        # parse can still be dumped
        objects = [manifest]
        for kind, api_version in CHILD_KINDS:
            prefix = (
                constants.LIMITS_CONFIG_MAP_NAME_PREFIX
                if (kind, api_version) == CONFIG_MAP
                else constants.RESOURCE_NAME_PREFIX
            )
            child_name = f"{prefix}-{name}"
            _, obj = deploy_manager.get_object_current_state(
                kind=kind, name=child_name, namespace=namespace, api_version=api_version
            )
            if obj is not None:
                objects.append(obj)
        yaml.safe_dump_all(objects, sys.stdout, default_flow_style=False)
