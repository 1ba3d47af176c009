from hitline.errors import InsufficientTokens


def require(player, amount: int, action: str) -> None:
    if player.tokens < amount:
        raise InsufficientTokens(
            f"{action} costs {amount} token{'s' if amount != 1 else ''}, you have {player.tokens}"
        )


def spend(player, amount: int, action: str) -> None:
    """Deduct ``amount`` or reject; balances are never clamped at zero."""
    require(player, amount, action)
    player.tokens -= amount


def earn(player, amount: int) -> None:
    player.tokens += amount
