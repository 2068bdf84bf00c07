"""Dice rolling commands.

    roll            one six-sided die
    roll 3          three six-sided dice
    roll 2 20       two twenty-sided dice
"""

import random

from switchboard import Bot, t

plugin = Bot(description="Dice rolls")


async def explain(event):
    await event.ctx.msg.reply(f"Invalid roll: {event.error}")
    return True


# Registered before the commands so they pick it up
plugin.on_error(explain)

roll_args = t.object({
    "count": t.number().refine(lambda n: 1 <= n <= 20, "Roll between 1 and 20 dice").default(1),
    "sides": t.number().refine(lambda n: 2 <= n <= 1000, "Dice need 2 to 1000 sides").default(6),
})


@plugin.cmd("roll :count :sides", roll_args, description="Roll dice: roll [count] [sides]")
def roll(ctx):
    count, sides = int(ctx.params["count"]), int(ctx.params["sides"])
    rolls = [random.randint(1, sides) for _ in range(count)]
    if count == 1:
        return f"{rolls[0]}"
    return f"{' + '.join(map(str, rolls))} = {sum(rolls)}"
