"""Tests for the HTTP backend adapters against mocked endpoints."""

import asyncio
import json
import logging

import httpx
import pytest

from conftest import NOW, MemoryCredentialStore, fresh_credential
from llm_dispatch.errors import (
    MalformedResponse,
    MissingRequiredField,
    ParameterNotAllowed,
    ProviderError,
    UnknownModel,
    UnsupportedOperation,
)
from llm_dispatch.llm.config import CompatibleConfig, OllamaConfig, OpenAIConfig, VertexConfig
from llm_dispatch.llm.credentials import CredentialManager, OAuthRefresher
from llm_dispatch.llm.providers import (
    CompatibleAdapter,
    HostedOpenAIAdapter,
    OllamaAdapter,
    VertexAdapter,
)
from llm_dispatch.llm.providers.vertex import to_vertex_contents
from llm_dispatch.llm.registry import ModelRegistry
from llm_dispatch.llm.transport import Transport
from llm_dispatch.llm.types import (
    ChatMessage,
    CompletionRequest,
    EmbeddingRequest,
    ImageRequest,
    TextResponse,
    ToolCallResponse,
)

CHAT_URL = "https://api.openai.com/v1/chat/completions"
RESPONSES_URL = "https://api.openai.com/v1/responses"
EMBED_URL = "https://api.openai.com/v1/embeddings"


def _body(request: httpx.Request) -> dict:
    return json.loads(request.content)


@pytest.fixture
def hosted(transport: Transport) -> HostedOpenAIAdapter:
    return HostedOpenAIAdapter(ModelRegistry(), transport)


class TestHostedOpenAI:
    """Endpoint and body shape chosen from catalog metadata."""

    @pytest.mark.asyncio
    async def test_chat_model_uses_chat_endpoint(self, hosted: HostedOpenAIAdapter, httpx_mock) -> None:
        httpx_mock.add_response(
            url=CHAT_URL,
            method="POST",
            json={"choices": [{"message": {"role": "assistant", "content": "Paris"}}]},
        )
        cfg = OpenAIConfig(api_key="sk-test", model="gpt-4o")
        result = await hosted.complete(cfg, CompletionRequest(prompt="Capital of France?"))
        assert result == TextResponse("Paris")

        sent = httpx_mock.get_request()
        assert sent.headers["Authorization"] == "Bearer sk-test"
        assert "api-key" not in sent.headers
        body = _body(sent)
        assert body["model"] == "gpt-4o"
        assert body["messages"][0] == {"role": "system", "content": "You are a helpful assistant."}
        assert body["messages"][-1] == {"role": "user", "content": "Capital of France?"}

    @pytest.mark.asyncio
    async def test_reasoning_model_uses_responses(self, hosted: HostedOpenAIAdapter, httpx_mock) -> None:
        httpx_mock.add_response(
            url=RESPONSES_URL,
            method="POST",
            json={"output": [{"type": "message", "content": [{"type": "output_text", "text": "4"}]}]},
        )
        cfg = OpenAIConfig(api_key="sk-test", model="o3-2025-04-16")
        result = await hosted.complete(cfg, CompletionRequest(prompt="2+2?"))
        assert result.text == "4"

        body = _body(httpx_mock.get_request())
        # Dated id goes on the wire even though metadata came from "o3"
        assert body["model"] == "o3-2025-04-16"
        assert body["input"][0]["role"] == "developer"
        assert body["reasoning"] == {"effort": "auto", "summary": "auto"}
        assert body["store"] is True

    @pytest.mark.asyncio
    async def test_api_key_override_sets_both_headers(self, hosted: HostedOpenAIAdapter, httpx_mock) -> None:
        httpx_mock.add_response(url=CHAT_URL, json={"choices": [{"message": {"content": "ok"}}]})
        request = CompletionRequest(prompt="hi", api_key="sk-call")
        cfg = OpenAIConfig(api_key="sk-stored", model="gpt-4o-mini").with_overrides(request)
        await hosted.complete(cfg, request)
        sent = httpx_mock.get_request()
        assert sent.headers["Authorization"] == "Bearer sk-call"
        assert sent.headers["api-key"] == "sk-call"

    @pytest.mark.asyncio
    async def test_error_envelope(self, hosted: HostedOpenAIAdapter, httpx_mock) -> None:
        httpx_mock.add_response(
            url=CHAT_URL, status_code=401, json={"error": {"message": "Incorrect API key provided"}}
        )
        with pytest.raises(ProviderError) as exc:
            await hosted.complete(OpenAIConfig(api_key="bad", model="gpt-4o"), CompletionRequest(prompt="x"))
        assert exc.value.status == 401
        assert "Incorrect API key" in str(exc.value)

    @pytest.mark.asyncio
    async def test_model_without_endpoint(self, hosted: HostedOpenAIAdapter) -> None:
        with pytest.raises(UnknownModel):
            await hosted.complete(OpenAIConfig(model="babbage-002"), CompletionRequest(prompt="x"))

    @pytest.mark.asyncio
    async def test_unclassifiable_model(self, hosted: HostedOpenAIAdapter) -> None:
        with pytest.raises(UnknownModel):
            await hosted.complete(OpenAIConfig(model="mystery"), CompletionRequest(prompt="x"))

    @pytest.mark.asyncio
    async def test_model_required(self, hosted: HostedOpenAIAdapter) -> None:
        with pytest.raises(MissingRequiredField, match="model"):
            await hosted.complete(OpenAIConfig(), CompletionRequest(prompt="x"))

    @pytest.mark.asyncio
    async def test_single_embedding(self, hosted: HostedOpenAIAdapter, httpx_mock) -> None:
        httpx_mock.add_response(url=EMBED_URL, json={"data": [{"index": 0, "embedding": [0.1, 0.2]}]})
        vector = await hosted.embed(OpenAIConfig(api_key="k"), EmbeddingRequest(input="hello"))
        assert vector == [0.1, 0.2]
        assert _body(httpx_mock.get_request()) == {"model": "text-embedding-3-small", "input": "hello"}

    @pytest.mark.asyncio
    async def test_batch_embedding_keeps_order(self, hosted: HostedOpenAIAdapter, httpx_mock) -> None:
        httpx_mock.add_response(
            url=EMBED_URL,
            json={"data": [{"index": 1, "embedding": [2.0]}, {"index": 0, "embedding": [1.0]}]},
        )
        vectors = await hosted.embed(
            OpenAIConfig(api_key="k"),
            EmbeddingRequest(input=["a", "b"], options={"dimensions": 1, "bogus": True}),
        )
        assert vectors == [[1.0], [2.0]]
        assert _body(httpx_mock.get_request())["dimensions"] == 1
        assert "bogus" not in _body(httpx_mock.get_request())

    @pytest.mark.asyncio
    async def test_embedding_with_chat_model(self, hosted: HostedOpenAIAdapter) -> None:
        with pytest.raises(UnsupportedOperation):
            await hosted.embed(OpenAIConfig(embed_model="gpt-4o"), EmbeddingRequest(input="x"))

    @pytest.mark.asyncio
    async def test_image_generation(self, hosted: HostedOpenAIAdapter, httpx_mock) -> None:
        httpx_mock.add_response(
            url="https://api.openai.com/v1/images/generations",
            json={"created": 1, "data": [{"b64_json": "AAAA"}]},
        )
        result = await hosted.generate_image(
            OpenAIConfig(api_key="k", model="gpt-image-1"),
            ImageRequest(prompt="a red fox", params={"size": "1024x1024", "n": 50}),
        )
        assert result["data"][0]["b64_json"] == "AAAA"
        body = _body(httpx_mock.get_request())
        assert body == {"model": "gpt-image-1", "prompt": "a red fox", "n": 10, "size": "1024x1024"}

    @pytest.mark.asyncio
    async def test_image_validation_before_request(self, hosted: HostedOpenAIAdapter) -> None:
        with pytest.raises(ParameterNotAllowed):
            await hosted.generate_image(
                OpenAIConfig(model="dall-e-3"), ImageRequest(prompt="x", params={"style": "sketch"})
            )


class TestCompatible:
    """Caller-supplied URL and free-form options."""

    @pytest.mark.asyncio
    async def test_completion(self, transport: Transport, httpx_mock) -> None:
        url = "http://vllm.local:8000/v1/chat/completions"
        httpx_mock.add_response(url=url, json={"choices": [{"message": {"content": "hi"}}]})
        cfg = CompatibleConfig(endpoint=url, bearer="tok", api_key="azure-key", model="qwen")
        result = await CompatibleAdapter(transport).complete(
            cfg, CompletionRequest(prompt="hello", options={"seed": 7, "reasoning.effort": "low"})
        )
        assert result == TextResponse("hi")
        sent = httpx_mock.get_request()
        assert sent.headers["Authorization"] == "Bearer tok"
        assert sent.headers["api-key"] == "azure-key"
        body = _body(sent)
        assert body["model"] == "qwen"
        assert body["temperature"] == 0.7
        assert body["seed"] == 7
        assert "reasoning.effort" not in body

    @pytest.mark.asyncio
    async def test_endpoint_required(self, transport: Transport) -> None:
        with pytest.raises(MissingRequiredField, match="endpoint"):
            await CompatibleAdapter(transport).complete(CompatibleConfig(model="m"), CompletionRequest(prompt="x"))

    @pytest.mark.asyncio
    async def test_embedding(self, transport: Transport, httpx_mock) -> None:
        url = "http://vllm.local:8000/v1/embeddings"
        httpx_mock.add_response(url=url, json={"data": [{"embedding": [0.5]}]})
        vector = await CompatibleAdapter(transport).embed(
            CompatibleConfig(embed_endpoint=url, embed_model="bge"), EmbeddingRequest(input="x")
        )
        assert vector == [0.5]
        assert _body(httpx_mock.get_request())["model"] == "bge"

    @pytest.mark.asyncio
    async def test_images_unsupported(self, transport: Transport) -> None:
        with pytest.raises(UnsupportedOperation):
            await CompatibleAdapter(transport).generate_image(CompatibleConfig(), ImageRequest(prompt="x"))


class TestOllama:
    """Native /api/chat and /api/embeddings."""

    @pytest.mark.asyncio
    async def test_chat_with_options(self, transport: Transport, httpx_mock) -> None:
        httpx_mock.add_response(
            url="http://127.0.0.1:11434/api/chat",
            json={"message": {"role": "assistant", "content": "Bonjour"}, "done": True},
        )
        result = await OllamaAdapter(transport).complete(
            OllamaConfig(model="llama3"),
            CompletionRequest(prompt="Say hi in French", temperature=0.2, max_output_tokens=64),
        )
        assert result == TextResponse("Bonjour")
        body = _body(httpx_mock.get_request())
        assert body["stream"] is False
        assert body["options"] == {"temperature": 0.2, "num_predict": 64}

    @pytest.mark.asyncio
    async def test_tool_call_gets_id(self, transport: Transport, httpx_mock) -> None:
        httpx_mock.add_response(
            url="http://127.0.0.1:11434/api/chat",
            json={"message": {
                "role": "assistant",
                "content": "",
                "tool_calls": [{"function": {"name": "get_time", "arguments": {"tz": "UTC"}}}],
            }},
        )
        result = await OllamaAdapter(transport).complete(
            OllamaConfig(model="llama3.1"),
            CompletionRequest(prompt="time?", tools=[{"name": "get_time"}]),
        )
        assert isinstance(result, ToolCallResponse)
        assert result.arguments == {"tz": "UTC"}
        assert result.call.id.startswith("call_")

    @pytest.mark.asyncio
    async def test_history_arguments_sent_as_objects(self, transport: Transport, httpx_mock) -> None:
        httpx_mock.add_response(url="http://127.0.0.1:11434/api/chat", json={"message": {"content": "done"}})
        history = (
            ChatMessage(role="assistant", tool_calls=[
                {"id": "c1", "type": "function", "function": {"name": "f", "arguments": '{"a": 1}'}},
            ]),
            ChatMessage(role="tool", tool_call_id="c1", content="42"),
        )
        await OllamaAdapter(transport).complete(OllamaConfig(model="m"), CompletionRequest(prompt="go", chat=history))
        messages = _body(httpx_mock.get_request())["messages"]
        assert messages[1]["tool_calls"] == [{"function": {"name": "f", "arguments": {"a": 1}}}]

    @pytest.mark.asyncio
    async def test_batch_embedding_one_request_per_text(self) -> None:
        # The first text is answered last; results must still follow input order
        delays = {"a": 0.05, "b": 0.0, "c": 0.02}
        answered: list[str] = []

        async def handler(request: httpx.Request) -> httpx.Response:
            text = json.loads(request.content)["prompt"]
            await asyncio.sleep(delays[text])
            answered.append(text)
            return httpx.Response(200, json={"embedding": [float(ord(text))]})

        def factory(timeout: float) -> httpx.AsyncClient:
            return httpx.AsyncClient(transport=httpx.MockTransport(handler), timeout=timeout)

        vectors = await OllamaAdapter(Transport(factory, 5.0)).embed(
            OllamaConfig(embed_model="nomic"), EmbeddingRequest(input=["a", "b", "c"])
        )
        assert answered == ["b", "c", "a"]
        assert vectors == [[97.0], [98.0], [99.0]]

    @pytest.mark.asyncio
    async def test_malformed_embedding(self, transport: Transport, httpx_mock) -> None:
        httpx_mock.add_response(url="http://127.0.0.1:11434/api/embeddings", json={"embedding": "nope"})
        with pytest.raises(MalformedResponse):
            await OllamaAdapter(transport).embed(OllamaConfig(model="nomic"), EmbeddingRequest(input="a"))

    @pytest.mark.asyncio
    async def test_embed_endpoint_routes_to_compatible(self, transport: Transport, httpx_mock) -> None:
        url = "http://127.0.0.1:11434/v1/embeddings"
        httpx_mock.add_response(url=url, json={"data": [{"embedding": [3.0]}, {"embedding": [4.0]}]})
        vectors = await OllamaAdapter(transport).embed(
            OllamaConfig(embed_model="nomic", embed_endpoint=url), EmbeddingRequest(input=["x", "y"])
        )
        assert vectors == [[3.0], [4.0]]

    @pytest.mark.asyncio
    async def test_daemon_error(self, transport: Transport, httpx_mock) -> None:
        httpx_mock.add_response(
            url="http://127.0.0.1:11434/api/chat", status_code=404, json={"error": "model 'x' not found"}
        )
        with pytest.raises(ProviderError, match="not found"):
            await OllamaAdapter(transport).complete(OllamaConfig(model="x"), CompletionRequest(prompt="hi"))


@pytest.fixture
def vertex(transport: Transport) -> VertexAdapter:
    store = MemoryCredentialStore({"vertex_oauth": fresh_credential("ya29.vertex")})
    credentials = CredentialManager(store, OAuthRefresher(transport), clock=lambda: NOW)
    return VertexAdapter(transport, credentials)


class TestVertex:
    """generateContent / predict with a bearer from the credential manager."""

    cfg = VertexConfig(project_id="proj", region="us-central1")

    @pytest.mark.asyncio
    async def test_generate_content(self, vertex: VertexAdapter, httpx_mock) -> None:
        httpx_mock.add_response(
            url=self.cfg.model_url("gemini-1.5-pro", "generateContent"),
            json={"candidates": [{"content": {"role": "model", "parts": [{"text": "Hola"}]}}]},
        )
        result = await vertex.complete(self.cfg, CompletionRequest(prompt="hi", system_prompt="Be brief."))
        assert result == TextResponse("Hola")
        sent = httpx_mock.get_request()
        assert sent.headers["Authorization"] == "Bearer ya29.vertex"
        body = _body(sent)
        assert body["systemInstruction"] == {"parts": [{"text": "Be brief."}]}
        assert body["contents"][-1] == {"role": "user", "parts": [{"text": "hi"}]}
        assert body["generationConfig"] == {"temperature": 0.7}

    @pytest.mark.asyncio
    async def test_function_call(self, vertex: VertexAdapter, httpx_mock) -> None:
        httpx_mock.add_response(
            url=self.cfg.model_url("gemini-1.5-pro", "generateContent"),
            json={"candidates": [{"content": {"parts": [
                {"functionCall": {"name": "lookup", "args": {"q": "x"}}},
            ]}}]},
        )
        result = await vertex.complete(
            self.cfg, CompletionRequest(prompt="find x", tools=[{"name": "lookup", "description": "search"}])
        )
        assert isinstance(result, ToolCallResponse)
        assert result.name == "lookup"
        tools = _body(httpx_mock.get_request())["tools"]
        assert tools[0]["functionDeclarations"][0]["name"] == "lookup"

    @pytest.mark.asyncio
    async def test_missing_candidates(self, vertex: VertexAdapter, httpx_mock) -> None:
        httpx_mock.add_response(url=self.cfg.model_url("gemini-1.5-pro", "generateContent"), json={})
        with pytest.raises(MalformedResponse, match="candidates"):
            await vertex.complete(self.cfg, CompletionRequest(prompt="hi"))

    @pytest.mark.asyncio
    async def test_embeddings(self, vertex: VertexAdapter, httpx_mock) -> None:
        httpx_mock.add_response(
            url=self.cfg.model_url("text-embedding-005", "predict"),
            json={"predictions": [{"embeddings": {"values": [0.1]}}, {"embeddings": {"values": [0.2]}}]},
        )
        vectors = await vertex.embed(self.cfg, EmbeddingRequest(input=["a", "b"]))
        assert vectors == [[0.1], [0.2]]
        instances = _body(httpx_mock.get_request())["instances"]
        assert instances[0] == {"content": "a", "task_type": "RETRIEVAL_QUERY"}

    def test_history_roles(self) -> None:
        history = (
            ChatMessage(role="user", content="weather?"),
            ChatMessage(role="assistant", tool_calls=[
                {"id": "c1", "function": {"name": "weather", "arguments": '{"city": "Oslo"}'}},
            ]),
            ChatMessage(role="tool", tool_call_id="c1", content="rain"),
            ChatMessage(role="system", content="note"),
        )
        contents = to_vertex_contents(history)
        assert [c["role"] for c in contents] == ["user", "model", "user", "model"]
        assert contents[1]["parts"][0]["functionCall"] == {"name": "weather", "args": {"city": "Oslo"}}
        assert contents[2]["parts"][0]["functionResponse"] == {"name": "weather", "response": {"content": "rain"}}

    @pytest.mark.parametrize("raw", ["{not json", "[1, 2]"])
    def test_history_bad_arguments_sent_empty(self, raw: str, caplog: pytest.LogCaptureFixture) -> None:
        history = (
            ChatMessage(role="user", content="weather?"),
            ChatMessage(role="assistant", tool_calls=[{"id": "c1", "function": {"name": "weather", "arguments": raw}}]),
        )
        with caplog.at_level(logging.WARNING, logger="llm_dispatch.llm.providers.vertex"):
            contents = to_vertex_contents(history)
        assert contents[1]["parts"][0]["functionCall"] == {"name": "weather", "args": {}}
        assert "weather" in caplog.text
