"""
Unit tests for protocol/session.py

Tests availability gating, request/response validation, immutability of
sessions and the mock executor.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from stepchain.config import SessionConfig
from stepchain.errors import (
    MockResponseMissingError,
    ProtocolDefinitionError,
    RequestValidationError,
    ResponseValidationError,
    StepUnavailableError,
    UnknownStepError,
    ValidationIssue,
)
from stepchain.protocol import (
    ExecutionContext,
    MockExecutor,
    ProtocolSession,
    create_session,
    dependent_step,
    from_step,
    mapped_step,
    protocol,
    step,
)
from stepchain.protocol.schemas import NeverSchema, ValidationResult

from conftest import (
    AResponse,
    EmptyRequest,
    LoginRequest,
    LoginResponse,
    ProfileResponse,
    TokenSuccess,
)


LOGIN = {"username": "ada", "password": "secret"}


class TestCreateSession:
    """Test create_session."""

    def test_empty_session(self, auth_protocol, auth_executor):
        """Test a new session has no history."""
        session = create_session(auth_protocol, auth_executor)
        assert isinstance(session, ProtocolSession)
        assert session.history == ()
        assert dict(session.responses) == {}
        assert session.completed == frozenset()
        assert session.available_steps() == ["login"]
        assert not session.is_terminal()

    def test_invalid_protocol_rejected(self, auth_executor):
        """Test invalid protocols are refused."""
        broken = protocol(
            name="Broken",
            initial="b",
            steps=[dependent_step(name="b", depends_on="ghost", request=lambda p: EmptyRequest, response=AResponse)],
        )
        with pytest.raises(ProtocolDefinitionError) as exc_info:
            create_session(broken, auth_executor)
        assert exc_info.value.protocol_name == "Broken"
        assert "ghost" in str(exc_info.value)

    def test_validation_can_be_disabled(self, auth_executor):
        """Test validation on create can be turned off."""
        broken = protocol(name="Broken", initial="nope", steps=[step(name="a", request=EmptyRequest, response=AResponse)])
        session = create_session(broken, auth_executor, SessionConfig(validate_on_create=False))
        assert session.available_steps() == ["a"]


class TestAvailability:
    """Test can_execute and available_steps."""

    def test_independent_step_always_available(self, auth_protocol, auth_executor):
        """Test independent steps are available."""
        session = create_session(auth_protocol, auth_executor)
        assert session.can_execute("login")

    def test_dependent_step_gated(self, auth_protocol, auth_executor):
        """Test dependent steps wait for their dependency."""
        session = create_session(auth_protocol, auth_executor)
        assert not session.can_execute("profile")

    def test_unknown_step_not_available(self, auth_protocol, auth_executor):
        """Test unknown steps are unavailable."""
        session = create_session(auth_protocol, auth_executor)
        assert not session.can_execute("logout")

    @pytest.mark.asyncio
    async def test_available_after_dependency_runs(self, auth_protocol, auth_executor):
        """Test a step opens once its dependency runs."""
        session = create_session(auth_protocol, auth_executor)
        result = await session.execute("login", LOGIN)
        assert result.session.can_execute("profile")
        assert result.session.available_steps() == ["login", "profile"]
        assert not session.can_execute("profile")


class TestExecute:
    """Test ProtocolSession.execute."""

    @pytest.mark.asyncio
    async def test_login_then_profile(self, auth_protocol, auth_executor):
        """Test the login then profile flow."""
        s0 = create_session(auth_protocol, auth_executor)

        r1 = await s0.execute("login", LOGIN)
        assert isinstance(r1.response, LoginResponse)
        assert r1.response.token == "tok-123"
        assert r1.session.history == ("login",)
        assert not r1.session.is_terminal()

        r2 = await r1.session.execute("profile", {"token": "tok-123", "fields": ["name"]})
        assert isinstance(r2.response, ProfileResponse)
        assert r2.session.history == ("login", "profile")
        assert r2.session.completed == frozenset({"login", "profile"})
        assert r2.session.is_terminal()

        assert s0.history == ()
        assert r1.session.history == ("login",)

    @pytest.mark.asyncio
    async def test_validated_request_reaches_executor(self, auth_protocol, auth_executor):
        """Test the executor receives validated data."""
        session = create_session(auth_protocol, auth_executor)
        await session.execute("login", LOGIN)
        [request] = auth_executor.calls_for("login")
        assert isinstance(request, LoginRequest)
        assert request.username == "ada"

    @pytest.mark.asyncio
    async def test_mapped_field_mismatch_rejected(self, auth_protocol, auth_executor):
        """Test a forged mapped value is rejected."""
        s1 = (await create_session(auth_protocol, auth_executor).execute("login", LOGIN)).session

        with pytest.raises(RequestValidationError) as exc_info:
            await s1.execute("profile", {"token": "forged", "fields": ["name"]})

        assert exc_info.value.paths == ["token"]
        assert auth_executor.calls_for("profile") == []
        assert s1.history == ("login",)

    @pytest.mark.asyncio
    async def test_invalid_request_never_calls_executor(self, auth_protocol, auth_executor):
        """Test invalid requests never reach the executor."""
        session = create_session(auth_protocol, auth_executor)
        with pytest.raises(RequestValidationError) as exc_info:
            await session.execute("login", {"username": "ada"})
        assert exc_info.value.step_name == "login"
        assert exc_info.value.paths == ["password"]
        assert auth_executor.calls == []

    @pytest.mark.asyncio
    async def test_invalid_response_raised_after_call(self, auth_protocol):
        """Test invalid responses leave the session unchanged."""
        executor = MockExecutor({"login": {"token": "tok"}})
        session = create_session(auth_protocol, executor)

        with pytest.raises(ResponseValidationError) as exc_info:
            await session.execute("login", LOGIN)

        assert exc_info.value.paths == ["userId"]
        assert len(executor.calls) == 1
        assert session.history == ()
        assert dict(session.responses) == {}

    @pytest.mark.asyncio
    async def test_unknown_step(self, auth_protocol, auth_executor):
        """Test executing an unknown step."""
        session = create_session(auth_protocol, auth_executor)
        with pytest.raises(UnknownStepError) as exc_info:
            await session.execute("logout", {})
        assert str(exc_info.value) == "Unknown step: logout"
        assert isinstance(exc_info.value, StepUnavailableError)

    @pytest.mark.asyncio
    async def test_dependency_not_satisfied(self, auth_protocol, auth_executor):
        """Test executing before the dependency ran."""
        session = create_session(auth_protocol, auth_executor)
        with pytest.raises(StepUnavailableError) as exc_info:
            await session.execute("profile", {"token": "tok-123", "fields": []})
        assert exc_info.value.missing == "login"
        assert str(exc_info.value) == 'Cannot execute "profile": dependency "login" not satisfied'
        assert auth_executor.calls == []

    @pytest.mark.asyncio
    async def test_repeated_step_keeps_latest_response(self, auth_protocol):
        """Test repeats keep history and the latest response."""
        tokens = iter(["tok-1", "tok-2"])
        executor = MockExecutor({"login": lambda req: {"token": next(tokens), "userId": "u-1"}})
        s1 = (await create_session(auth_protocol, executor).execute("login", LOGIN)).session
        s2 = (await s1.execute("login", LOGIN)).session

        assert s2.history == ("login", "login")
        assert s2.responses["login"].token == "tok-2"
        assert s1.responses["login"].token == "tok-1"

        with pytest.raises(RequestValidationError):
            await s2.execute("profile", {"token": "tok-1", "fields": []})

    @pytest.mark.asyncio
    async def test_fork_from_checkpoint(self, auth_protocol, auth_executor):
        """Test two successors from one session."""
        s1 = (await create_session(auth_protocol, auth_executor).execute("login", LOGIN)).session

        a = await s1.execute("profile", {"token": "tok-123", "fields": ["name"]})
        b = await s1.execute("profile", {"token": "tok-123", "fields": ["email"]})

        assert a.session.history == b.session.history == ("login", "profile")
        assert s1.history == ("login",)

    @pytest.mark.asyncio
    async def test_concurrent_forks_do_not_interfere(self, diamond_protocol, diamond_executor):
        """Test concurrent executions from one session."""
        s0 = create_session(diamond_protocol, diamond_executor)
        ra, rb = await asyncio.gather(s0.execute("a", {}), s0.execute("b", {}))

        assert ra.session.history == ("a",)
        assert rb.session.history == ("b",)
        assert s0.history == ()

    @pytest.mark.asyncio
    async def test_executor_receives_context(self, auth_protocol):
        """Test the executor gets the execution context."""
        executor = AsyncMock()
        executor.execute.return_value = {"token": "tok", "userId": "u"}
        session = create_session(auth_protocol, executor)

        await session.execute("login", LOGIN)

        name, request, context = executor.execute.await_args.args
        assert name == "login"
        assert isinstance(request, LoginRequest)
        assert isinstance(context, ExecutionContext)
        assert context.protocol_name == "TestAuth"
        assert context.history == ()

    @pytest.mark.asyncio
    async def test_executor_errors_propagate_unchanged(self, auth_protocol):
        """Test executor exceptions are not wrapped."""
        boom = RuntimeError("upstream down")
        executor = AsyncMock()
        executor.execute.side_effect = boom
        session = create_session(auth_protocol, executor)

        with pytest.raises(RuntimeError) as exc_info:
            await session.execute("login", LOGIN)
        assert exc_info.value is boom
        assert session.history == ()


class TestDiamond:
    """Mapped step gated on one step while reading from another."""

    @pytest.mark.asyncio
    async def test_c_available_after_b_alone(self, diamond_protocol, diamond_executor):
        """Test C is available but fails without A."""
        s1 = (await create_session(diamond_protocol, diamond_executor).execute("b", {})).session
        assert s1.can_execute("c")

        with pytest.raises(RequestValidationError) as exc_info:
            await s1.execute("c", {"a_id": "a-1", "b_value": "b-1"})
        assert exc_info.value.paths == ["a_id"]
        assert diamond_executor.calls_for("c") == []

    @pytest.mark.asyncio
    async def test_c_after_a_and_b(self, diamond_protocol, diamond_executor):
        """Test C succeeds once A and B ran."""
        s0 = create_session(diamond_protocol, diamond_executor)
        s1 = (await s0.execute("a", {})).session
        s2 = (await s1.execute("b", {})).session

        result = await s2.execute("c", {"a_id": "a-1", "b_value": "b-1"})
        assert result.response.ok is True
        assert result.session.is_terminal()

    @pytest.mark.asyncio
    async def test_request_schema_pins_both_sources(self, diamond_protocol, diamond_executor):
        """Test both sources are pinned."""
        s0 = create_session(diamond_protocol, diamond_executor)
        s2 = (await (await s0.execute("a", {})).session.execute("b", {})).session

        schema = s2.request_schema_for("c")
        assert schema.validate({"a_id": "a-1", "b_value": "b-1"}).valid
        assert not schema.validate({"a_id": "a-1", "b_value": "other"}).valid


class TestCustomRequestValidator:
    """Mapped steps whose request schema is not a pydantic model."""

    class ValueValidator:
        def validate(self, value):
            if isinstance(value, dict) and isinstance(value.get("value"), str):
                return ValidationResult.ok(value)
            return ValidationResult.fail([ValidationIssue("value", "expected a string")])

    def build(self):
        return protocol(
            name="Custom",
            initial="issue",
            steps=[
                step(name="issue", request=EmptyRequest, response=AResponse),
                mapped_step(
                    name="use",
                    depends_on="issue",
                    request_mapping={"value": from_step("issue", "id")},
                    request_schema=self.ValueValidator(),
                    response=AResponse,
                ),
            ],
        )

    @pytest.mark.asyncio
    async def test_mismatch_is_request_validation_error(self):
        """Test a wrong pinned value raises RequestValidationError without calling the executor."""
        executor = MockExecutor({"issue": {"id": "a"}, "use": {"id": "done"}})
        s1 = (await create_session(self.build(), executor).execute("issue", {})).session

        with pytest.raises(RequestValidationError) as exc_info:
            await s1.execute("use", {"value": "b"})

        assert exc_info.value.paths == ["value"]
        assert executor.calls_for("use") == []

    @pytest.mark.asyncio
    async def test_matching_value_executes(self):
        """Test the recorded value passes the wrapped validator."""
        executor = MockExecutor({"issue": {"id": "a"}, "use": {"id": "done"}})
        s1 = (await create_session(self.build(), executor).execute("issue", {})).session

        result = await s1.execute("use", {"value": "a"})

        assert result.response.id == "done"
        assert executor.calls_for("use") == [{"value": "a"}]


class TestOAuthFlow:
    """Dependent steps deriving request schemas from prior responses."""

    AUTHORIZE = {"response_type": "code", "client_id": "app", "state": "xyz"}

    @pytest.mark.asyncio
    async def test_full_flow(self, oauth_protocol, oauth_executor):
        """Test the authorize, exchange, refresh and revoke flow."""
        s0 = create_session(oauth_protocol, oauth_executor)
        s1 = (await s0.execute("authorize", self.AUTHORIZE)).session

        exchange = await s1.execute("exchange", {
            "grant_type": "authorization_code",
            "code": "auth-code-1",
            "client_id": "app",
            "client_secret": "s3cret",
        })
        assert isinstance(exchange.response, TokenSuccess)
        s2 = exchange.session

        assert s2.available_steps() == ["authorize", "exchange", "refresh", "revoke"]

        refreshed = await s2.execute("refresh", {
            "grant_type": "refresh_token",
            "refresh_token": "refresh-1",
            "client_id": "app",
        })
        assert refreshed.response.access_token == "access-2"

        revoked = await refreshed.session.execute("revoke", {"token": "access-1", "client_id": "app"})
        assert revoked.session.is_terminal()
        assert revoked.session.history == ("authorize", "exchange", "refresh", "revoke")

    @pytest.mark.asyncio
    async def test_wrong_code_rejected(self, oauth_protocol, oauth_executor):
        """Test a foreign authorization code is rejected."""
        s1 = (await create_session(oauth_protocol, oauth_executor).execute("authorize", self.AUTHORIZE)).session
        with pytest.raises(RequestValidationError) as exc_info:
            await s1.execute("exchange", {
                "grant_type": "authorization_code",
                "code": "stolen",
                "client_id": "app",
                "client_secret": "s3cret",
            })
        assert exc_info.value.paths == ["code"]

    @pytest.mark.asyncio
    async def test_error_variant_makes_step_illegal(self, oauth_protocol):
        """Test an error response makes exchange illegal."""
        executor = MockExecutor({"authorize": {"type": "error", "error": "access_denied"}})
        s1 = (await create_session(oauth_protocol, executor).execute("authorize", self.AUTHORIZE)).session

        assert s1.can_execute("exchange")
        assert isinstance(s1.request_schema_for("exchange"), NeverSchema)

        with pytest.raises(RequestValidationError):
            await s1.execute("exchange", {
                "grant_type": "authorization_code",
                "code": "anything",
                "client_id": "app",
                "client_secret": "s3cret",
            })
        assert executor.calls_for("exchange") == []


class TestRequestSchemaFor:
    """Test request_schema_for."""

    def test_independent_step_returns_declared_schema(self, auth_protocol, auth_executor):
        """Test independent steps use their declared schema."""
        session = create_session(auth_protocol, auth_executor)
        assert session.request_schema_for("login") is auth_protocol.steps["login"].request

    def test_unknown_step_raises(self, auth_protocol, auth_executor):
        """Test unknown steps raise."""
        session = create_session(auth_protocol, auth_executor)
        with pytest.raises(UnknownStepError):
            session.request_schema_for("nope")

    def test_unavailable_step_raises(self, auth_protocol, auth_executor):
        """Test unavailable steps raise."""
        session = create_session(auth_protocol, auth_executor)
        with pytest.raises(StepUnavailableError):
            session.request_schema_for("profile")


class TestGetSummary:
    """Test get_summary."""

    @pytest.mark.asyncio
    async def test_summary(self, auth_protocol, auth_executor):
        """Test summary contents."""
        s1 = (await create_session(auth_protocol, auth_executor).execute("login", LOGIN)).session
        assert s1.get_summary() == {
            "protocol": "TestAuth",
            "history": ["login"],
            "completed": ["login"],
            "available": ["login", "profile"],
            "terminal": False,
        }


class TestMockExecutor:
    """Test MockExecutor."""

    @pytest.mark.asyncio
    async def test_static_response(self):
        """Test static responses are returned and recorded."""
        executor = MockExecutor({"a": {"id": "1"}})
        context = ExecutionContext(protocol_name="P", history=(), responses={})
        assert await executor.execute("a", {}, context) == {"id": "1"}
        assert executor.calls == [("a", {}, context)]

    @pytest.mark.asyncio
    async def test_callable_response_receives_request(self):
        """Test callables receive the request."""
        executor = MockExecutor({"echo": lambda req: {"id": req["x"]}})
        context = ExecutionContext(protocol_name="P", history=(), responses={})
        assert await executor.execute("echo", {"x": "7"}, context) == {"id": "7"}

    @pytest.mark.asyncio
    async def test_async_callable_response(self):
        """Test async callables are awaited."""
        async def respond(req):
            return {"id": "async"}

        executor = MockExecutor({"a": respond})
        context = ExecutionContext(protocol_name="P", history=(), responses={})
        assert await executor.execute("a", {}, context) == {"id": "async"}

    @pytest.mark.asyncio
    async def test_missing_response_raises(self):
        """Test unconfigured steps raise."""
        executor = MockExecutor({})
        context = ExecutionContext(protocol_name="P", history=(), responses={})
        with pytest.raises(MockResponseMissingError) as exc_info:
            await executor.execute("ghost", {}, context)
        assert str(exc_info.value) == "No mock response configured for step: ghost"
        assert executor.calls_for("ghost") == [{}]

    @pytest.mark.asyncio
    async def test_missing_response_surfaces_through_session(self):
        """Test the mock error propagates through execute."""
        proto = protocol(name="P", initial="a", steps=[step(name="a", request=EmptyRequest, response=AResponse)])
        session = create_session(proto, MockExecutor({}))
        with pytest.raises(MockResponseMissingError):
            await session.execute("a", {})
