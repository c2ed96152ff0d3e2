"""Unit tests for configuration, labels, machine types and error kinds."""

import pytest

from spawner.config import Config
from spawner.core_utils import CloudProvider, OperationCounter
from spawner.exceptions import (
    InvalidInputError,
    NotFoundError,
    ProviderError,
    UnsupportedOperationError,
)
from spawner.instances import (
    get_instance,
    is_gpu,
    mig_partition_size,
    resolve_instance,
    wants_gpu_partition,
)
from spawner.labels import build_tags, default_tags, node_labels
from spawner.messages import MigProfile, NodeSpec


@pytest.mark.unit
@pytest.mark.fast
class TestConfig:
    """Test Config loading."""

    def test_defaults(self):
        config = Config()
        assert config.env == "dev"
        assert config.grpc_port == 8083
        assert config.secret_host_region == "us-west-2"
        assert config.is_local is False

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("SPAWNER_ENV", "local")
        monkeypatch.setenv("SPAWNER_GRPC_PORT", "9090")
        monkeypatch.setenv("SECRET_HOST_REGION", "eu-west-1")
        monkeypatch.setenv("EKS_SUBNET_IDS", "subnet-a, subnet-b,")
        monkeypatch.setenv("GOOGLE_CLOUD_PROJECT", "proj-1")

        config = Config.from_env()

        assert config.is_local is True
        assert config.grpc_port == 9090
        assert config.secret_host_region == "eu-west-1"
        assert config.eks_subnet_ids == ["subnet-a", "subnet-b"]
        assert config.gcp_project_id == "proj-1"

    def test_project_id_from_service_account_file(self, monkeypatch, tmp_path):
        key_file = tmp_path / "key.json"
        key_file.write_text('{"project_id": "from-file"}')
        monkeypatch.delenv("GOOGLE_CLOUD_PROJECT", raising=False)
        monkeypatch.setenv("GOOGLE_APPLICATION_CREDENTIALS", str(key_file))

        config = Config.from_env()

        assert config.gcp_project_id == "from-file"
        assert config.gcp_service_account_file == str(key_file)

    def test_provider_parse_is_case_insensitive(self):
        assert CloudProvider.parse(" AWS ") is CloudProvider.AWS
        with pytest.raises(ValueError):
            CloudProvider.parse("oracle")

    def test_counter_increments(self):
        counter = OperationCounter()
        assert counter.increment() == 1
        assert counter.increment() == 2
        assert counter.value == 2


@pytest.mark.unit
@pytest.mark.fast
class TestLabels:
    """Test tag and label normalisation."""

    def test_default_tags(self):
        assert default_tags("dev") == {"scope": "nb-dev", "creator": "spawner-service"}

    def test_build_tags_keeps_defaults(self):
        tags = build_tags({"user": "dev-tester"}, "prod")
        assert tags == {
            "scope": "nb-prod",
            "creator": "spawner-service",
            "user": "dev-tester",
        }

    def test_build_tags_without_labels(self):
        assert build_tags(None, "dev") == default_tags("dev")

    def test_node_labels_computed_fields(self):
        spec = NodeSpec(name="pool-1", instance="Standard_D4s_v3+premium")
        labels = node_labels(spec, "dev")

        assert labels["node-name"] == "pool-1"
        assert labels["node-selector"] == "pool-1"
        assert labels["instance"] == "Standard_D4s_v3-premium"
        assert labels["type"] == "nodegroup"
        assert labels["scope"] == "nb-dev"
        assert labels["creator"] == "spawner-service"

    def test_caller_labels_override_computed(self):
        spec = NodeSpec(
            name="pool-1",
            instance="t3.medium",
            labels={"node-name": "custom", "instance": "override"},
        )
        labels = node_labels(spec, "dev")

        assert labels["node-name"] == "custom"
        assert labels["instance"] == "override"
        assert labels["scope"] == "nb-dev"

    def test_resolved_instance_wins_over_spec(self):
        spec = NodeSpec(name="pool-1", machine_type="m")
        assert node_labels(spec, "dev", "m5.xlarge")["instance"] == "m5.xlarge"


@pytest.mark.unit
@pytest.mark.fast
class TestInstances:
    """Test machine-type resolution."""

    def test_machine_type_lookup(self):
        assert get_instance(CloudProvider.AWS, "m") == "m5.xlarge"
        assert get_instance(CloudProvider.GCP, "M") == "e2-standard-4"
        assert get_instance(CloudProvider.AZURE, "unknown") == ""

    def test_machine_type_wins_over_instance(self):
        spec = NodeSpec(name="n", machine_type="s", instance="e2-medium")
        assert resolve_instance(CloudProvider.AWS, spec) == "t3.medium"

    def test_unknown_machine_type_falls_back_to_instance(self):
        spec = NodeSpec(name="n", machine_type="huge", instance="c5.large")
        assert resolve_instance(CloudProvider.AWS, spec) == "c5.large"

    def test_neither_machine_type_nor_instance(self):
        with pytest.raises(InvalidInputError):
            resolve_instance(CloudProvider.AWS, NodeSpec(name="n"))

    def test_gpu_partition_requires_gpu_and_profile(self):
        assert is_gpu("gpu-m")
        assert not wants_gpu_partition(NodeSpec(name="n", machine_type="gpu-m"))
        assert not wants_gpu_partition(
            NodeSpec(name="n", machine_type="m", mig_profile=MigProfile.MIG3G)
        )
        assert wants_gpu_partition(
            NodeSpec(name="n", machine_type="gpu-m", mig_profile=MigProfile.MIG3G)
        )
        assert wants_gpu_partition(
            NodeSpec(name="n", gpu_enabled=True, mig_profile=MigProfile.MIG1G)
        )

    def test_partition_sizes(self):
        assert mig_partition_size(MigProfile.MIG1G) == "1g.5gb"
        assert mig_partition_size(MigProfile.MIG7G) == "7g.40gb"

    def test_node_count_defaults_to_one(self):
        assert NodeSpec(name="n").node_count == 1
        assert NodeSpec(name="n", count=3).node_count == 3


@pytest.mark.unit
@pytest.mark.fast
class TestExceptions:
    """Test error kinds and annotation."""

    def test_annotate_keeps_kind_and_cause(self):
        original = NotFoundError("cluster 'a' not found")
        annotated = original.annotate("DeleteCluster")

        assert isinstance(annotated, NotFoundError)
        assert annotated.message == "DeleteCluster: cluster 'a' not found"
        assert annotated.__cause__ is original

    def test_unsupported_is_provider_error(self):
        error = UnsupportedOperationError("nope").annotate("PresignS3Url")
        assert isinstance(error, ProviderError)
        assert str(error) == "PresignS3Url: nope"
