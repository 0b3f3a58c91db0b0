import json
import time
import unittest
from unittest.mock import MagicMock

from app.models.trading_state import InstrumentQuote, Trade
from app.services.decision_service import (
    EMPTY_REPLY_ANALYSIS,
    DecisionService,
    DecisionServiceError,
    MissingCredentialsError,
)

CREDENTIALS = {"geminiApiKey": "test-key", "mt5Server": "", "mt5Login": "", "mt5Password": ""}


def make_service(reply_text=None, side_effect=None, timeout=5.0):
    client = MagicMock()
    if side_effect is not None:
        client.models.generate_content.side_effect = side_effect
    else:
        client.models.generate_content.return_value.text = reply_text
    factory = MagicMock(return_value=client)
    return DecisionService(model_name="test-model", timeout=timeout, client_factory=factory), factory, client


def snapshot():
    return [InstrumentQuote(pair="EUR/USD", price=1.1, change24h=0.001, volatility=0.004, trend="BULLISH")]


class TestParseDecision(unittest.TestCase):
    def setUp(self):
        self.service, _, _ = make_service()

    def test_fenced_hold_matches_unfenced(self):
        payload = {"action": "HOLD", "analysis": "Range-bound, waiting."}
        fenced = "```json\n" + json.dumps(payload) + "\n```"

        self.assertEqual(self.service.parse_decision(fenced).to_dict(), payload)
        self.assertEqual(self.service.parse_decision(json.dumps(payload)).to_dict(), payload)

    def test_plain_fence_is_stripped(self):
        decision = self.service.parse_decision('```\n{"action": "HOLD", "analysis": "x"}\n```')
        self.assertEqual(decision.action, "HOLD")
        self.assertEqual(decision.analysis, "x")

    def test_non_json_becomes_hold_with_raw_text(self):
        text = "I think EUR/USD looks strong today."
        decision = self.service.parse_decision(text)
        self.assertEqual(decision.to_dict(), {"action": "HOLD", "analysis": text})

    def test_empty_reply_uses_placeholder(self):
        self.assertEqual(self.service.parse_decision("").analysis, EMPTY_REPLY_ANALYSIS)
        self.assertEqual(self.service.parse_decision(None).analysis, EMPTY_REPLY_ANALYSIS)

    def test_open_trade_is_parsed(self):
        text = json.dumps({
            "action": "OPEN_TRADE",
            "analysis": "Trend up",
            "trade": {"pair": "EUR/USD", "type": "BUY", "volume": 0.5, "entryPrice": 1.1, "reasoning": "Momentum"},
        })
        decision = self.service.parse_decision(text)

        self.assertEqual(decision.action, "OPEN_TRADE")
        self.assertEqual(decision.trade.type, "BUY")
        self.assertEqual(decision.trade.entry_price, 1.1)
        self.assertEqual(decision.trade.volume, 0.5)

    def test_invalid_direction_falls_back_to_hold(self):
        text = json.dumps({
            "action": "OPEN_TRADE",
            "analysis": "Go long",
            "trade": {"pair": "EUR/USD", "type": "LONG", "volume": 0.5, "entryPrice": 1.1},
        })
        decision = self.service.parse_decision(text)
        self.assertEqual(decision.action, "HOLD")
        self.assertEqual(decision.analysis, text)

    def test_non_finite_volume_falls_back_to_hold(self):
        text = '{"action": "OPEN_TRADE", "analysis": "a", "trade": {"pair": "EUR/USD", "type": "BUY", "volume": NaN, "entryPrice": 1.1}}'
        self.assertEqual(self.service.parse_decision(text).action, "HOLD")

    def test_deeply_nested_reply_falls_back_to_hold(self):
        text = "[" * 100000 + "]" * 100000
        decision = self.service.parse_decision(text)
        self.assertEqual(decision.action, "HOLD")
        self.assertEqual(decision.analysis, text)

    def _open_reply(self, **trade_overrides):
        trade = {"pair": "EUR/USD", "type": "BUY", "volume": 0.5, "entryPrice": 1.1, "reasoning": "r"}
        trade.update(trade_overrides)
        return json.dumps({"action": "OPEN_TRADE", "analysis": "a", "trade": trade})

    def test_boolean_volume_is_rejected(self):
        text = self._open_reply(volume=True)
        decision = self.service.parse_decision(text)
        self.assertEqual(decision.action, "HOLD")
        self.assertEqual(decision.analysis, text)

    def test_string_numbers_are_rejected(self):
        self.assertEqual(self.service.parse_decision(self._open_reply(volume="0.5")).action, "HOLD")
        self.assertEqual(self.service.parse_decision(self._open_reply(entryPrice="1.1")).action, "HOLD")

    def test_integer_volume_is_accepted(self):
        decision = self.service.parse_decision(self._open_reply(volume=1))
        self.assertEqual(decision.action, "OPEN_TRADE")
        self.assertEqual(decision.trade.volume, 1.0)

    def test_unknown_pair_is_rejected(self):
        self.assertEqual(self.service.parse_decision(self._open_reply(pair="DOGE/XYZ")).action, "HOLD")

    def test_non_string_analysis_is_rejected(self):
        self.assertEqual(self.service.parse_decision('{"action": "HOLD", "analysis": 42}').action, "HOLD")
        self.assertEqual(self.service.parse_decision('{"action": "HOLD", "analysis": 42}').analysis,
                         '{"action": "HOLD", "analysis": 42}')

    def test_unknown_action_falls_back_to_hold(self):
        self.assertEqual(self.service.parse_decision('{"action": "BUY_EVERYTHING"}').action, "HOLD")

    def test_json_array_falls_back_to_hold(self):
        self.assertEqual(self.service.parse_decision('[1, 2, 3]').action, "HOLD")

    def test_close_requires_trade_id(self):
        decision = self.service.parse_decision('{"action": "CLOSE_TRADE", "analysis": "Take profit"}')
        self.assertEqual(decision.action, "HOLD")

    def test_numeric_trade_id_is_accepted(self):
        decision = self.service.parse_decision('{"action": "CLOSE_TRADE", "analysis": "a", "tradeId": 1712345678}')
        self.assertEqual(decision.action, "CLOSE_TRADE")
        self.assertEqual(decision.trade_id, "1712345678")


class TestRequestDecision(unittest.IsolatedAsyncioTestCase):
    async def test_missing_credentials_rejected_before_any_call(self):
        service, factory, client = make_service('{"action": "HOLD", "analysis": "x"}')

        for credentials in (None, {}, {"geminiApiKey": ""}, {"geminiApiKey": "   "}):
            with self.assertRaises(MissingCredentialsError):
                await service.request_decision(snapshot(), [], 10000.0, credentials)

        self.assertEqual(factory.call_count, 0)
        self.assertEqual(client.models.generate_content.call_count, 0)

    async def test_transport_failure_propagates(self):
        service, _, _ = make_service(side_effect=ConnectionError("connection refused"))

        with self.assertRaises(DecisionServiceError):
            await service.request_decision(snapshot(), [], 10000.0, CREDENTIALS)

    async def test_malformed_reply_is_not_an_error(self):
        service, _, _ = make_service("Sorry, I cannot help with that.")
        decision = await service.request_decision(snapshot(), [], 10000.0, CREDENTIALS)
        self.assertEqual(decision.action, "HOLD")
        self.assertEqual(decision.analysis, "Sorry, I cannot help with that.")

    async def test_prompt_contains_snapshot_open_trades_and_balance(self):
        service, factory, client = make_service('```json\n{"action": "HOLD", "analysis": "Wait"}\n```')
        open_trade = Trade(id="open123", pair="EUR/USD", type="BUY", entry_price=1.1, current_price=1.1, volume=0.5)
        closed_trade = Trade(id="closed456", pair="GBP/USD", type="SELL", entry_price=1.3, current_price=1.29,
                             volume=0.2, status="CLOSED")

        decision = await service.request_decision(snapshot(), [open_trade, closed_trade], 10000.0, CREDENTIALS)

        self.assertEqual(decision.to_dict(), {"action": "HOLD", "analysis": "Wait"})
        factory.assert_called_once_with("test-key")
        kwargs = client.models.generate_content.call_args.kwargs
        self.assertEqual(kwargs["model"], "test-model")
        prompt = kwargs["contents"]
        self.assertIn('"pair": "EUR/USD"', prompt)
        self.assertIn("open123", prompt)
        self.assertNotIn("closed456", prompt)
        self.assertIn("Account Balance: $10000.00", prompt)
        self.assertIn("Maximum 3 open trades", prompt)

    async def test_timeout_yields_hold(self):
        service, _, _ = make_service(side_effect=lambda **kwargs: time.sleep(0.5), timeout=0.05)

        decision = await service.request_decision(snapshot(), [], 10000.0, CREDENTIALS)

        self.assertEqual(decision.action, "HOLD")
        self.assertIn("timed out", decision.analysis)


if __name__ == '__main__':
    unittest.main()
