import asyncio

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from solana_rent_sweeper.analysis.classifier import AccountClassifier, HeuristicPolicy
from solana_rent_sweeper.datalake.schemas import AccountAction, AccountCategory, MintFact
from solana_rent_sweeper.utils.constants import NON_BURNABLE_MINTS
from solana_rent_sweeper.utils.errors import InvalidAddress

USDC = Pubkey.from_string("EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v")


def _add_usdc(chain) -> Pubkey:
    return chain.add_mint(decimals=6, address=USDC)


def test_classify_labels_every_account_in_enumeration_order(chain, components) -> None:
    wallet = Keypair().pubkey()
    token_mint = chain.add_mint(decimals=6)
    nft_mint = chain.add_mint(decimals=0, supply=1)
    usdc = _add_usdc(chain)

    empty = chain.add_token_account(wallet, token_mint, 0)
    holding = chain.add_token_account(wallet, token_mint, 500)
    stable = chain.add_token_account(wallet, usdc, 100)
    nft = chain.add_token_account(wallet, nft_mint, 1)
    frozen = chain.add_token_account(wallet, token_mint, 0, state=2)
    empty_nft = chain.add_token_account(wallet, nft_mint, 0)

    result = asyncio.run(components.classifier.classify(str(wallet)))

    assert [item.address for item in result] == [str(a) for a in (empty, holding, stable, nft, frozen, empty_nft)]
    labels = [(item.action, item.category) for item in result]
    assert labels == [
        (AccountAction.CLOSE, AccountCategory.CLOSEABLE),
        (AccountAction.BURN, AccountCategory.BURNABLE_TOKEN),
        (AccountAction.IGNORE, AccountCategory.NON_BURNABLE),
        (AccountAction.BURN, AccountCategory.BURNABLE_NFT),
        (AccountAction.IGNORE, AccountCategory.IGNORED),
        (AccountAction.IGNORE, AccountCategory.IGNORED),
    ]
    assert result[0].gross_recoverable == chain.rent
    assert result[1].gross_recoverable == chain.rent
    assert result[2].gross_recoverable == 0
    assert result[4].reason == "frozen"
    assert result[5].reason == "compressed collectible"
    assert result[1].account.decimals == 6


def test_rent_minimum_is_fetched_once_per_scan(chain, components) -> None:
    wallet = Keypair().pubkey()
    mint = chain.add_mint()
    for _ in range(5):
        chain.add_token_account(wallet, mint, 0)

    asyncio.run(components.classifier.classify(wallet))
    asyncio.run(components.classifier.classify(wallet))

    assert chain.calls.count("get_minimum_balance_for_rent_exemption") == 1
    # second scan reuses cached mint facts
    assert chain.calls.count("get_multiple_accounts") == 1


def test_classify_rejects_off_curve_and_malformed_addresses(components) -> None:
    with pytest.raises(InvalidAddress):
        asyncio.run(components.classifier.classify("not-a-key"))
    off_curve, _ = Pubkey.find_program_address([b"vault"], Pubkey.new_unique())
    with pytest.raises(InvalidAddress):
        asyncio.run(components.classifier.classify(str(off_curve)))


def test_wallet_without_accounts_returns_empty_list(components) -> None:
    assert asyncio.run(components.classifier.classify(Keypair().pubkey())) == []


def test_custom_policy_replaces_heuristics(chain, components) -> None:
    class NothingSpecial:
        def is_compressed_collectible(self, mint: MintFact) -> bool:
            return False

        def is_non_burnable(self, mint_address: str) -> bool:
            return False

    wallet = Keypair().pubkey()
    usdc = _add_usdc(chain)
    nft_mint = chain.add_mint(decimals=0, supply=1)
    chain.add_token_account(wallet, usdc, 100)
    chain.add_token_account(wallet, nft_mint, 0)

    classifier = AccountClassifier(components.reader, components.cache, NothingSpecial())
    result = asyncio.run(classifier.classify(wallet))
    assert [item.action for item in result] == [AccountAction.BURN, AccountAction.CLOSE]


def test_heuristic_policy_defaults() -> None:
    policy = HeuristicPolicy()
    for mint in NON_BURNABLE_MINTS:
        assert policy.is_non_burnable(mint)
    assert policy.is_compressed_collectible(MintFact(address="m", decimals=0, supply=1, is_initialized=True))
    assert not policy.is_compressed_collectible(MintFact(address="m", decimals=0, supply=2, is_initialized=True))
