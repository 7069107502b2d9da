import pytest

from flash_arb_bot.__main__ import main
from flash_arb_bot.config import Config, VenueConfig, load_config_from_env, parse_venues

from conftest import DEV_PRIVATE_KEY, TOKEN_A, TOKEN_B


def valid_config(**overrides) -> Config:
    config = Config(private_key=DEV_PRIVATE_KEY)
    config.chain.contract_address = "0x5fbdb2315678afecb367f032d93f642f64180aa3"
    config.trading.scan_token = TOKEN_A
    config.venues = [
        VenueConfig("alpha", "constant_product", "pair-a", "router-a", TOKEN_A, TOKEN_B),
        VenueConfig("beta", "concentrated", "pool-b", "router-b", TOKEN_A, TOKEN_B, fee=500),
    ]
    for name, value in overrides.items():
        setattr(config, name, value)
    return config


class TestVenueConfig:
    def test_defaults_by_kind(self):
        cp = VenueConfig("alpha", "constant_product", "p", "r", TOKEN_A, TOKEN_B)
        cl = VenueConfig("beta", "concentrated", "p", "r", TOKEN_A, TOKEN_B)

        assert cp.effective_fee == 30
        assert cp.venue_id == "alpha"
        assert cl.effective_fee == 3000
        assert cl.venue_id == "beta-3000"

    def test_parse_venues(self):
        venues = parse_venues(
            "alpha:constant_product:0xpair:0xrouter:TKA:TKB,"
            " beta:concentrated:0xpool:0xrouter2:TKA:TKB:500,"
            "broken:entry"
        )

        assert [v.venue_id for v in venues] == ["alpha", "beta-500"]
        assert venues[0].fee is None
        assert venues[1].router == "0xrouter2"

    def test_parse_empty(self):
        assert parse_venues("") == []


class TestValidate:
    def test_valid(self):
        assert valid_config().validate() == []

    def test_missing_secrets_and_token(self):
        config = valid_config(private_key="")
        config.chain.contract_address = ""
        config.trading.scan_token = ""

        errors = config.validate()

        assert "PRIVATE_KEY is required" in errors
        assert "CONTRACT_ADDRESS is required" in errors
        assert "SCAN_TOKEN is required" in errors

    def test_venue_problems(self):
        config = valid_config()
        config.venues.append(VenueConfig("alpha", "constant_product", "p", "r", TOKEN_B, "TKC"))
        config.venues.append(VenueConfig("gamma", "orderbook", "p", "r", TOKEN_A, TOKEN_B))

        errors = config.validate()

        assert "Venue alpha does not trade TKA" in errors
        assert "Venue ids must be unique" in errors
        assert "Venue gamma: unknown kind orderbook" in errors

    def test_single_venue_rejected(self):
        config = valid_config()
        config.venues = config.venues[:1]
        assert "At least two venues must be configured" in config.validate()

    @pytest.mark.parametrize("section, name, value", [
        ("trading", "amount_in", 0),
        ("trading", "slippage_tolerance_pct", 100.0),
        ("trading", "max_fee_profit_ratio", 0.0),
        ("risk", "max_failures", 0),
        ("submission", "channel", "carrier-pigeon"),
        ("submission", "bundle_blocks", 0),
    ])
    def test_parameter_bounds(self, section, name, value):
        config = valid_config()
        setattr(getattr(config, section), name, value)
        assert config.validate()


class TestEnvironment:
    def test_load(self, monkeypatch):
        monkeypatch.setenv("PRIVATE_KEY", DEV_PRIVATE_KEY)
        monkeypatch.setenv("CONTRACT_ADDRESS", "0xcontract")
        monkeypatch.setenv("VENUES", "alpha:constant_product:p:r:TKA:TKB,beta:constant_product:p:r:TKA:TKB:25")
        monkeypatch.setenv("SCAN_TOKEN", TOKEN_A)
        monkeypatch.setenv("SCAN_AMOUNT", str(5 * 10 ** 18))
        monkeypatch.setenv("SLIPPAGE_TOLERANCE", "0.5")
        monkeypatch.setenv("MAX_FAILURES", "3")
        monkeypatch.setenv("PAUSED_POLL", "2.5")
        monkeypatch.setenv("REDIS_URL", "redis://cache:6379/0")
        monkeypatch.setenv("SUBMISSION_CHANNEL", "PUBLIC")
        monkeypatch.setenv("DRY_RUN", "true")
        monkeypatch.setenv("ENFORCE_PRICE_IMPACT", "1")

        config = load_config_from_env()

        assert config.private_key == DEV_PRIVATE_KEY
        assert config.chain.contract_address == "0xcontract"
        assert [v.effective_fee for v in config.venues] == [30, 25]
        assert config.trading.amount_in == 5 * 10 ** 18
        assert config.trading.slippage_tolerance_bps == 50
        assert config.risk.max_failures == 3
        assert config.risk.paused_poll_seconds == 2.5
        assert config.lock.redis_url == "redis://cache:6379/0"
        assert config.submission.channel == "public"
        assert config.trading.dry_run
        assert config.trading.enforce_price_impact
        assert config.validate() == []

    def test_defaults(self, monkeypatch):
        for name in ("VENUES", "DRY_RUN", "SUBMISSION_CHANNEL", "REDIS_URL", "ENFORCE_PRICE_IMPACT"):
            monkeypatch.delenv(name, raising=False)

        config = load_config_from_env()

        assert config.venues == []
        assert not config.trading.dry_run
        assert not config.trading.enforce_price_impact
        assert config.submission.channel == "private"
        assert config.lock.redis_url == ""


class TestEntryPoint:
    def test_check_prints_venues(self, monkeypatch, capsys):
        monkeypatch.setenv("PRIVATE_KEY", DEV_PRIVATE_KEY)
        monkeypatch.setenv("CONTRACT_ADDRESS", "0xcontract")
        monkeypatch.setenv("SCAN_TOKEN", TOKEN_A)
        monkeypatch.setenv("VENUES", "alpha:constant_product:0xpair:r:TKA:TKB,beta:concentrated:0xpool:r:TKA:TKB:500")
        monkeypatch.delenv("DRY_RUN", raising=False)

        assert main(["--check", "--dry-run"]) == 0

        out = capsys.readouterr().out
        assert "[1] beta-500 (concentrated, fee 500) 0xpool" in out
        assert "dry_run=True" in out

    def test_invalid_config_exits_non_zero(self, monkeypatch, capsys):
        monkeypatch.setenv("PRIVATE_KEY", "")
        monkeypatch.delenv("VENUES", raising=False)

        assert main(["--check"]) == 1
        assert "PRIVATE_KEY is required" in capsys.readouterr().err
