"""
Solana JSON-RPC Client
Read-only access to account data over HTTP (aiohttp)
"""

from typing import Any, Dict, List, Optional, Sequence
import asyncio
import base64
import binascii

import aiohttp
from solders.pubkey import Pubkey

from config.constants import DEFAULT_COMMITMENT, MAX_KEYS_PER_CALL, RPC_TIMEOUT_SEC
from core.accounts import FetchedAccount
from utils.exceptions import InvalidResponseError, RpcError, RpcTimeoutError
from utils.helpers import chunked
from utils.logger import get_logger


logger = get_logger(__name__)


class SolanaRpcClient:
    """
    Minimal async JSON-RPC client for the calls the monitor needs:
    getMultipleAccounts, getAccountInfo and getProgramAccounts.
    """

    def __init__(
        self,
        endpoint_url: str,
        commitment: str = DEFAULT_COMMITMENT,
        timeout_sec: float = RPC_TIMEOUT_SEC,
    ):
        self.endpoint_url = endpoint_url
        self.commitment = commitment
        self.timeout_sec = timeout_sec
        self.last_slot: Optional[int] = None
        self._session: Optional[aiohttp.ClientSession] = None
        self._request_id = 0

    async def initialize(self) -> None:
        """Open the HTTP session (idempotent)"""
        if self._session and not self._session.closed:
            return

        connector = aiohttp.TCPConnector(
            limit=10,
            ttl_dns_cache=300,
            enable_cleanup_closed=True
        )
        self._session = aiohttp.ClientSession(
            connector=connector,
            timeout=aiohttp.ClientTimeout(total=self.timeout_sec),
            headers={
                "User-Agent": "mango-owner-monitor/1.0",
                "Content-Type": "application/json",
                "Accept": "application/json"
            }
        )
        logger.info(f"RPC client initialized - endpoint: {self.endpoint_url}, commitment: {self.commitment}")

    async def close(self) -> None:
        """Close the HTTP session"""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("HTTP session closed")
        self._session = None

    async def __aenter__(self) -> 'SolanaRpcClient':
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ========================================================================
    # PUBLIC CALLS
    # ========================================================================

    async def get_multiple_accounts(self, addresses: Sequence[Pubkey]) -> List[FetchedAccount]:
        """
        Fetch many accounts in one HTTP round trip.

        Keys are split into getMultipleAccounts calls of at most MAX_KEYS_PER_CALL
        and sent as a single JSON-RPC batch. The result has one entry per requested
        address, in request order; missing accounts have data=None.

        Raises:
            RpcError: On transport or RPC level failure
            InvalidResponseError: If the response does not line up with the request
        """
        if not addresses:
            return []

        chunks = list(chunked(list(addresses), MAX_KEYS_PER_CALL))
        requests = [
            self._build_request(
                'getMultipleAccounts',
                [[str(key) for key in chunk], {'encoding': 'base64', 'commitment': self.commitment}]
            )
            for chunk in chunks
        ]

        payload: Any = requests[0] if len(requests) == 1 else requests
        response = await self._post(payload)
        results = self._match_batch(requests, response)

        fetched: List[FetchedAccount] = []
        slots = []
        for chunk, result in zip(chunks, results):
            values = self._value_of(result)
            if not isinstance(values, list) or len(values) != len(chunk):
                raise InvalidResponseError(
                    f"getMultipleAccounts returned {len(values) if isinstance(values, list) else 'no'} "
                    f"accounts for {len(chunk)} keys",
                    response_data=result
                )
            slots.append(result.get('context', {}).get('slot'))
            for key, value in zip(chunk, values):
                fetched.append(FetchedAccount(address=key, data=self._decode_data(value)))

        known_slots = [slot for slot in slots if slot is not None]
        self.last_slot = min(known_slots) if known_slots else None
        logger.debug(f"Fetched {len(fetched)} accounts in {len(chunks)} call(s), slot {self.last_slot}")
        return fetched

    async def get_account_info(self, address: Pubkey) -> FetchedAccount:
        """Fetch a single account; data is None when it does not exist"""
        request = self._build_request(
            'getAccountInfo',
            [str(address), {'encoding': 'base64', 'commitment': self.commitment}]
        )
        response = await self._post(request)
        result = self._match_batch([request], response)[0]
        return FetchedAccount(address=address, data=self._decode_data(self._value_of(result)))

    async def get_program_accounts(
        self,
        program_id: Pubkey,
        filters: Optional[List[Dict[str, Any]]] = None,
    ) -> List[FetchedAccount]:
        """
        Fetch every account owned by a program matching all filters.

        Args:
            program_id: Owning program
            filters: RPC filters, e.g. [{'dataSize': 4296},
                     {'memcmp': {'offset': 8, 'bytes': '<base58>'}}]
        """
        config: Dict[str, Any] = {'encoding': 'base64', 'commitment': self.commitment}
        if filters:
            config['filters'] = filters
        request = self._build_request('getProgramAccounts', [str(program_id), config])
        response = await self._post(request)
        result = self._match_batch([request], response)[0]

        if not isinstance(result, list):
            raise InvalidResponseError("getProgramAccounts did not return a list", response_data=result)

        accounts = []
        for item in result:
            try:
                address = Pubkey.from_string(item['pubkey'])
            except (KeyError, TypeError, ValueError) as e:
                raise InvalidResponseError(
                    "Malformed getProgramAccounts entry", response_data=item, original_error=e
                ) from e
            accounts.append(FetchedAccount(address=address, data=self._decode_data(item.get('account'))))
        return accounts

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _build_request(self, method: str, params: List[Any]) -> Dict[str, Any]:
        self._request_id += 1
        return {'jsonrpc': '2.0', 'id': self._request_id, 'method': method, 'params': params}

    async def _post(self, payload: Any) -> Any:
        if not self._session or self._session.closed:
            await self.initialize()

        try:
            async with self._session.post(self.endpoint_url, json=payload) as response:
                if response.status == 429:
                    raise RpcError(
                        "RPC rate limit exceeded",
                        status_code=429,
                        error_code='RATE_LIMITED'
                    )
                if response.status != 200:
                    text = await response.text()
                    raise RpcError(
                        f"RPC returned HTTP {response.status}",
                        status_code=response.status,
                        response_data=text[:500]
                    )
                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise InvalidResponseError(
                        "RPC response is not valid JSON",
                        status_code=response.status,
                        original_error=e
                    ) from e
        except asyncio.TimeoutError as e:
            raise RpcTimeoutError(
                f"RPC request timed out after {self.timeout_sec}s",
                error_code='TIMEOUT',
                original_error=e
            ) from e
        except aiohttp.ClientError as e:
            raise RpcError(f"RPC transport error: {e}", original_error=e) from e

    def _match_batch(self, requests: List[Dict[str, Any]], response: Any) -> List[Any]:
        """Return the 'result' of every request, in request order, raising on RPC errors"""
        responses = response if isinstance(response, list) else [response]
        by_id = {}
        for item in responses:
            if not isinstance(item, dict):
                raise InvalidResponseError("Malformed JSON-RPC response", response_data=item)
            by_id[item.get('id')] = item

        results = []
        for request in requests:
            item = by_id.get(request['id'])
            if item is None:
                raise InvalidResponseError(
                    f"No response for request {request['id']} ({request['method']})",
                    response_data=response
                )
            if 'error' in item:
                error = item['error'] or {}
                raise RpcError(
                    f"{request['method']} failed: {error.get('message', error)}",
                    error_code=str(error.get('code')) if error.get('code') is not None else None,
                    response_data=item
                )
            if 'result' not in item:
                raise InvalidResponseError(
                    f"Missing result for {request['method']}", response_data=item
                )
            results.append(item['result'])
        return results

    @staticmethod
    def _value_of(result: Any) -> Any:
        if not isinstance(result, dict) or 'value' not in result:
            raise InvalidResponseError("RPC result has no 'value'", response_data=result)
        return result['value']

    @staticmethod
    def _decode_data(account: Optional[Dict[str, Any]]) -> Optional[bytes]:
        if account is None:
            return None
        try:
            encoded, encoding = account['data']
            if encoding != 'base64':
                raise ValueError(f"unexpected encoding {encoding}")
            return base64.b64decode(encoded)
        except (KeyError, TypeError, ValueError, binascii.Error) as e:
            raise InvalidResponseError(
                "Malformed account data in RPC response",
                response_data=account,
                original_error=e
            ) from e
