"""
Tests for the __main__.py entrypoint to the library as an executable
"""

# Standard
from unittest import mock

# Third Party
import pytest
import yaml

# Local
from ratelimit_operator import config, constants
from ratelimit_operator.__main__ import main
from ratelimit_operator.config import library_config as config_values
from ratelimit_operator.log_format import RateLimiterJsonFormatter
from ratelimit_operator.test_helpers.helpers import (
    TEST_INSTANCE_NAME,
    TEST_NAMESPACE,
    library_config,
    setup_cr,
    setup_redis_secret,
)

## Helpers #####################################################################


@pytest.fixture(autouse=True)
def restore_config():
    """main writes every library config value from its args, so put the
    originals back afterwards and keep the log configuration untouched
    """
    with library_config(**dict(config_values)):
        with mock.patch("alog.configure") as configure_mock:
            yield configure_mock


def write_yaml(path, *objs):
    with open(path, "w", encoding="utf-8") as handle:
        yaml.safe_dump_all(objs, handle)
    return str(path)


## Tests #######################################################################


def test_no_command(capsys):
    """Make sure running without a command prints the help"""
    assert main([]) == 2
    assert "reconcile" in capsys.readouterr().out


def test_dry_run_reconcile(tmp_path, capsys):
    """Make sure a dry run reconcile prints the CR and its children"""
    cr_path = write_yaml(
        tmp_path / "cr.yaml",
        setup_cr(
            spec={
                "storage": {
                    "redis": {"configSecretRef": {"name": "redis-config"}}
                },
                "limits": [{"namespace": "a", "max_value": 1, "seconds": 1}],
            }
        ),
    )
    resource_dir = tmp_path / "resources"
    resource_dir.mkdir()
    write_yaml(resource_dir / "secret.yaml", setup_redis_secret())

    assert (
        main(
            [
                "reconcile",
                "--cr",
                cr_path,
                "--resource_dir",
                str(resource_dir),
                "--dry_run",
            ]
        )
        == 0
    )
    objs = list(yaml.safe_load_all(capsys.readouterr().out))
    assert [obj["kind"] for obj in objs] == [
        constants.RATE_LIMITER_KIND,
        "Service",
        "PersistentVolumeClaim",
        "Deployment",
        "ConfigMap",
    ]
    assert objs[0]["status"]["observedGeneration"] == 1
    assert all(
        obj["metadata"]["namespace"] == TEST_NAMESPACE for obj in objs
    )


def test_dry_run_reconcile_error(tmp_path):
    """Make sure a failed pass is reported in the exit code"""
    cr_path = write_yaml(tmp_path / "cr.yaml", setup_cr(spec={"pdb": {}}))
    assert main(["reconcile", "--cr", cr_path, "--dry_run"]) == 1


def test_dry_run_invalid_cr(tmp_path, capsys):
    """Make sure a CR that fails to parse is reported in the exit code and
    still printed
    """
    cr_path = write_yaml(
        tmp_path / "cr.yaml",
        setup_cr(
            spec={
                "storage": {
                    "redis": {"configSecretRef": {"name": "redis-config"}},
                    "disk": {},
                }
            }
        ),
    )
    assert main(["reconcile", "--cr", cr_path, "--dry_run"]) == 1
    objs = list(yaml.safe_load_all(capsys.readouterr().out))
    assert [obj["kind"] for obj in objs] == [constants.RATE_LIMITER_KIND]
    assert objs[0]["metadata"]["name"] == TEST_INSTANCE_NAME


def test_dry_run_missing_cr():
    """Make sure a missing RateLimiter is not an error"""
    assert (
        main(["reconcile", "--name", TEST_INSTANCE_NAME, "--dry_run"]) == 0
    )


def test_cr_requires_dry_run(tmp_path):
    """Make sure a CR file is only accepted in dry run mode"""
    cr_path = write_yaml(tmp_path / "cr.yaml", setup_cr())
    with pytest.raises(AssertionError):
        main(["reconcile", "--cr", cr_path])


def test_log_json(tmp_path, restore_config):
    """Make sure the json log flag selects the json formatter"""
    cr_path = write_yaml(tmp_path / "cr.yaml", setup_cr())
    main(["reconcile", "--cr", cr_path, "--dry_run", "--log_json"])
    assert isinstance(
        restore_config.call_args.kwargs["formatter"], RateLimiterJsonFormatter
    )


def test_library_config_override(tmp_path):
    """Make sure library config values can be set from the command line"""
    cr_path = write_yaml(tmp_path / "cr.yaml", setup_cr())
    main(
        [
            "reconcile",
            "--cr",
            cr_path,
            "--dry_run",
            "--default_image_tag",
            "v9",
        ]
    )
    assert config.default_image_tag == "v9"
