"""Unit tests for the lifecycle error decorator and exception taxonomy."""

import pytest

from cloudcraft.domain.core.exceptions import (
    ConfigurationError,
    LifecycleError,
    NoPublicAddressError,
    PartialTeardownError,
    ProviderError,
    ResourceNotFoundError,
)
from cloudcraft.infrastructure.error import ExceptionContext, handle_lifecycle_errors


class Backend:

    @handle_lifecycle_errors("read")
    def get_server(self, error):
        raise error

    @handle_lifecycle_errors("list")
    def list_servers(self):
        return ["mc-1"]


@pytest.mark.unit
class TestHandleLifecycleErrors:

    def setup_method(self):
        self.backend = Backend()

    def test_returns_result_unchanged(self):
        assert self.backend.list_servers() == ["mc-1"]

    def test_stamps_phase_on_lifecycle_errors(self):
        with pytest.raises(ResourceNotFoundError) as exc_info:
            self.backend.get_server(ResourceNotFoundError("Instance", "i-1", provider="aws"))

        assert exc_info.value.phase == "read"
        assert str(exc_info.value) == "[read] Instance with ID i-1 not found"

    def test_keeps_step_and_existing_phase(self):
        error = NoPublicAddressError("i-1").annotate(phase="update", step="resolve-address")

        with pytest.raises(NoPublicAddressError) as exc_info:
            self.backend.get_server(error)

        assert exc_info.value.phase == "update"
        assert exc_info.value.step == "resolve-address"

    def test_wraps_unexpected_exceptions(self):
        with pytest.raises(ProviderError) as exc_info:
            self.backend.get_server(KeyError("PublicIpAddress"))

        assert exc_info.value.phase == "read"
        assert isinstance(exc_info.value.__cause__, KeyError)

    def test_configuration_errors_pass_through(self):
        with pytest.raises(ConfigurationError):
            self.backend.get_server(ConfigurationError("missing project", ["project"]))

    def test_preserves_function_metadata(self):
        assert Backend.get_server.__name__ == "get_server"


@pytest.mark.unit
class TestLifecycleErrorMessages:

    def test_message_without_location(self):
        assert str(LifecycleError("boom")) == "boom"

    def test_annotate_does_not_overwrite(self):
        error = LifecycleError("boom", phase="create", step="create-vpc")
        error.annotate(phase="delete", step="delete-vpc")

        assert (error.phase, error.step) == ("create", "create-vpc")

    def test_partial_teardown_message(self):
        error = PartialTeardownError(
            "delete-vpc", ["terminate-instance", "delete-subnets"], ProviderError("DependencyViolation"),
            phase="delete",
        )

        assert str(error).startswith("[delete/delete-vpc] Teardown stopped at 'delete-vpc'")
        assert "terminate-instance, delete-subnets" in str(error)


@pytest.mark.unit
def test_exception_context_to_dict():
    context = ExceptionContext("AWSAutomation.create_server", phase="create", step="create-vpc")
    data = context.to_dict()

    assert data["operation"] == "AWSAutomation.create_server"
    assert data["layer"] == "provider"
    assert data["phase"] == "create"
    assert data["step"] == "create-vpc"
    assert "timestamp" in data and "thread_id" in data
