from tracker.bot import run

run()
