"""
graph_batch.py 단위 테스트

테스트 시나리오:
    1. 요청 순서대로 항목 결과 반환 (응답 순서와 무관)
    2. 20개 초과 시 분할 전송
    3. 429 / 5xx 항목만 재전송
    4. 4xx 항목은 재전송하지 않음
    5. 봉투 실패 -> 항목 실패, 인증 실패 -> 예외 전파
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from conftest import FakeResponse, FakeSession
from core.errors import ReauthorizationRequired
from mcp_outlook.graph_batch import GraphBatch
from mcp_outlook.graph_client import GraphClient
from mcp_outlook.graph_types import EndpointClass, GraphRequest


def batch_response(*items):
    """(id, status[, body[, headers]]) 튜플 -> $batch 응답"""
    responses = []
    for item in items:
        entry = {"id": str(item[0]), "status": item[1]}
        if len(item) > 2:
            entry["body"] = item[2]
        if len(item) > 3:
            entry["headers"] = item[3]
        responses.append(entry)
    return FakeResponse(200, {"responses": responses})


def delete_requests(count):
    return [GraphRequest(method="DELETE", path=f"me/messages/m{i}") for i in range(count)]


def sent_ids(call):
    return [entry["id"] for entry in call["json"]["requests"]]


@pytest.fixture
def make_batch(credential_provider, outlook_config):
    def factory(session):
        return GraphBatch(GraphClient(credential_provider, outlook_config, session=session))
    return factory


class TestGraphBatch:
    """GraphBatch.execute"""

    @pytest.mark.asyncio
    async def test_results_in_request_order(self, make_batch):
        session = FakeSession(batch_response((2, 204), (0, 204), (1, 204)))
        batch = make_batch(session)

        results = await batch.execute(delete_requests(3))

        assert [r.index for r in results] == [0, 1, 2]
        assert all(r.ok for r in results)
        assert len(session.calls) == 1
        assert session.calls[0]["url"].endswith("/$batch")
        assert session.calls[0]["json"]["requests"][0] == {"id": "0", "method": "DELETE", "url": "/me/messages/m0"}

    @pytest.mark.asyncio
    async def test_json_body_and_query(self, make_batch):
        session = FakeSession(batch_response((0, 200, {"id": "m0"}), (1, 200, {"value": []})))
        batch = make_batch(session)

        await batch.execute([
            GraphRequest(method="POST", path="me/messages/m0/move", json_body={"destinationId": "archive"}),
            GraphRequest(path="me/messages", params={"$top": 5, "$count": True}),
        ])

        move, listing = session.calls[0]["json"]["requests"]
        assert move["body"] == {"destinationId": "archive"}
        assert move["headers"]["Content-Type"] == "application/json"
        assert listing["url"] == "/me/messages?%24top=5&%24count=true"

    @pytest.mark.asyncio
    async def test_split_into_chunks_of_twenty(self, make_batch):
        session = FakeSession(
            batch_response(*[(i, 204) for i in range(20)]),
            batch_response(*[(i, 204) for i in range(20, 25)]),
        )
        batch = make_batch(session)

        results = await batch.execute(delete_requests(25))

        assert len(results) == 25
        assert all(r.ok for r in results)
        assert len(session.calls) == 2
        assert len(sent_ids(session.calls[0])) == 20
        assert sent_ids(session.calls[1]) == [str(i) for i in range(20, 25)]

    @pytest.mark.asyncio
    async def test_throttled_item_resent(self, make_batch):
        session = FakeSession(
            batch_response((0, 204), (1, 429, {"error": {"code": "TooManyRequests"}}, {"Retry-After": "0"}), (2, 204)),
            batch_response((1, 204)),
        )
        batch = make_batch(session)

        results = await batch.execute(delete_requests(3))

        assert all(r.ok for r in results)
        assert sent_ids(session.calls[1]) == ["1"]
        assert batch.client.rate_limits.state(EndpointClass.BATCH).consecutive_throttles == 0

    @pytest.mark.asyncio
    async def test_server_error_item_gives_up_after_attempts(self, make_batch):
        session = FakeSession(*[batch_response((0, 204), (1, 503)) if i == 0 else batch_response((1, 503)) for i in range(4)])
        batch = make_batch(session)

        results = await batch.execute(delete_requests(2))

        assert results[0].ok is True
        assert results[1].ok is False
        assert results[1].status == 503
        assert results[1].retryable is True
        assert len(session.calls) == 4

    @pytest.mark.asyncio
    async def test_client_error_item_not_resent(self, make_batch):
        not_found = {"error": {"code": "ErrorItemNotFound", "message": "Not found"}}
        session = FakeSession(batch_response((0, 204), (1, 404, not_found)))
        batch = make_batch(session)

        results = await batch.execute(delete_requests(2))

        assert results[1].ok is False
        assert results[1].retryable is False
        assert results[1].error == {"code": "ErrorItemNotFound", "message": "Not found"}
        assert len(session.calls) == 1

    @pytest.mark.asyncio
    async def test_missing_item_response_resent(self, make_batch):
        session = FakeSession(batch_response((0, 204)), batch_response((1, 204)))
        batch = make_batch(session)

        results = await batch.execute(delete_requests(2))

        assert all(r.ok for r in results)
        assert sent_ids(session.calls[1]) == ["1"]

    @pytest.mark.asyncio
    async def test_envelope_failure_marks_items_failed(self, make_batch):
        session = FakeSession(FakeResponse(400, {"error": {"code": "BadRequest", "message": "Invalid batch"}}))
        batch = make_batch(session)

        results = await batch.execute(delete_requests(2))

        assert [r.ok for r in results] == [False, False]
        assert results[0].status == 400
        assert "Invalid batch" in results[0].error["message"]

    @pytest.mark.asyncio
    async def test_envelope_reauthorization_propagates(self, make_batch):
        session = FakeSession(FakeResponse(401, {}), FakeResponse(401, {}))
        batch = make_batch(session)

        with pytest.raises(ReauthorizationRequired):
            await batch.execute(delete_requests(2))

    def test_batch_size_capped(self, credential_provider, outlook_config):
        outlook_config.batch_size = 5
        batch = GraphBatch(GraphClient(credential_provider, outlook_config, session=FakeSession()))

        assert batch._split_into_batches(list(range(12))) == [[0, 1, 2, 3, 4], [5, 6, 7, 8, 9], [10, 11]]
