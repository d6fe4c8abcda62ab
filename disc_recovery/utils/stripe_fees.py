"""
Card processing fee math for reward payments.

Stripe charges 2.9% + $0.30 per transaction. The owner pays the fee on top of
the reward so the finder receives the full reward amount.
"""
import math

STRIPE_PERCENTAGE_FEE = 0.029
STRIPE_FLAT_FEE_CENTS = 30


def to_cents(amount: float) -> int:
    return int(round(amount * 100))


def calculate_stripe_fee(reward_amount: float) -> float:
    """Fee in dollars such that reward + fee, minus Stripe's cut, equals the reward."""
    if reward_amount <= 0:
        return 0.0

    reward_cents = to_cents(reward_amount)
    total_cents = math.ceil((reward_cents + STRIPE_FLAT_FEE_CENTS) / (1 - STRIPE_PERCENTAGE_FEE))

    return (total_cents - reward_cents) / 100


def calculate_total_with_fee(reward_amount: float) -> float:
    if reward_amount <= 0:
        return 0.0
    return round(reward_amount + calculate_stripe_fee(reward_amount), 2)


def format_fee_preview(reward_amount: float) -> str:
    if reward_amount <= 0:
        return ""

    fee = calculate_stripe_fee(reward_amount)
    total = reward_amount + fee

    return f"${total:.2f} with card (includes ${fee:.2f} processing fee)"
