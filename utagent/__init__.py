"""Tool-calling agent runtime for generating unit tests with LLMs.

Usage:
    from utagent import (
        AgentExecutor, ContextManager, GovernanceInterceptor, ToolRegistry,
        load_config, create_adapter, tool,
    )

    class Tools:
        @tool("Read the content of a file", resource="file-read")
        def read_file(self, path: str) -> str:
            ...

    config = load_config("agent.yaml")
    registry = ToolRegistry(interceptor=GovernanceInterceptor(config.governance))
    registry.register(Tools())

    context = ContextManager(config.workflow.max_turns)
    context.set_system("You write unit tests.")
    executor = AgentExecutor(create_adapter(config.llm), registry, context)
    result = executor.run("Write tests for src/app.py")
    print(result.summary())

    # Whole-task retry with a fresh context and adapter per attempt
    from utagent import build_executor, run_agent_with_retry, RetryPolicy

    result = run_agent_with_retry(
        lambda: build_executor(config, registry, "You write unit tests."),
        "Write tests for src/app.py",
        RetryPolicy.from_workflow(config.workflow),
    )
"""

from utagent.config import AppConfig, LlmConfig, WorkflowConfig, load_config
from utagent.context import ContextManager
from utagent.errors import (
    AgentError,
    ConfigurationError,
    GovernanceDenied,
    PolicyExpressionError,
    ProtocolError,
    ToolExecutionError,
    TransportError,
)
from utagent.executor import AgentExecutor, AgentResult, build_executor
from utagent.governance import GovernanceConfig, GovernanceInterceptor, PolicyRule
from utagent.messages import (
    AssistantTurn,
    ParameterSchema,
    PropertySchema,
    SystemTurn,
    ToolCall,
    ToolDescriptor,
    ToolResultTurn,
    Turn,
    UserTurn,
)
from utagent.prompts import render_prompt
from utagent.providers import AnthropicAdapter, GeminiAdapter, LlmAdapter, OpenAiAdapter, create_adapter
from utagent.retry import RetryPolicy, backoff_delay, run_agent_with_retry
from utagent.streaming import CollectingStreamHandler, ConsoleStreamHandler, NullStreamHandler, StreamHandler
from utagent.tool_registry import RegisteredTool, ToolRegistry, ToolSpec, tool

__all__ = [
    "AgentError",
    "AgentExecutor",
    "AgentResult",
    "AnthropicAdapter",
    "AppConfig",
    "AssistantTurn",
    "CollectingStreamHandler",
    "ConfigurationError",
    "ConsoleStreamHandler",
    "ContextManager",
    "GeminiAdapter",
    "GovernanceConfig",
    "GovernanceDenied",
    "GovernanceInterceptor",
    "LlmAdapter",
    "LlmConfig",
    "NullStreamHandler",
    "OpenAiAdapter",
    "ParameterSchema",
    "PolicyExpressionError",
    "PolicyRule",
    "PropertySchema",
    "ProtocolError",
    "RegisteredTool",
    "RetryPolicy",
    "StreamHandler",
    "SystemTurn",
    "ToolCall",
    "ToolDescriptor",
    "ToolExecutionError",
    "ToolRegistry",
    "ToolResultTurn",
    "ToolSpec",
    "TransportError",
    "Turn",
    "UserTurn",
    "WorkflowConfig",
    "backoff_delay",
    "build_executor",
    "create_adapter",
    "load_config",
    "render_prompt",
    "run_agent_with_retry",
    "tool",
]
