"""Standalone expiry worker process.

The API process runs the expiry schedule itself unless
ENTRY_EXPIRY_SCHEDULER_ENABLED=false.  To run it in a dedicated process
instead (e.g. API replicas behind a load balancer plus one worker):

    python -m tcbf.worker             # run the hourly schedule until SIGTERM
    python -m tcbf.worker --once      # one locked run, then exit
    python -m tcbf.worker --manual    # one lock-bypassing operator run
    python -m tcbf.worker --status    # print lock / next-run state

Running the schedule in several processes is safe: the job lock lets one
run through per tick and the others skip.
"""
