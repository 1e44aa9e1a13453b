# marketplace/tasks.py

import logging

from marketplace import create_app
from marketplace.services import get_services
from marketplace.utils.clock import utcnow

logger = logging.getLogger(__name__)


def run_payout_schedule(app=None, now=None):
    """
    Scheduled task: create and submit payouts for every vendor whose payout
    settings are due.
    """
    app = app or create_app()
    with app.app_context():
        now = now or utcnow()
        logger.info('Running payout schedule at %s', now.isoformat())
        result = get_services().payouts.run_scheduled_payouts(now=now)
        logger.info('Payout schedule finished: %s', result)
        return result


def expire_finished_trials(app=None, now=None):
    """Scheduled task: expire trials whose end date has passed."""
    app = app or create_app()
    with app.app_context():
        now = now or utcnow()
        expired = get_services().trials.expire_trials(now=now)
        logger.info('Trial expiry job finished: %d expired', expired)
        return expired


if __name__ == '__main__':
    run_payout_schedule()
    expire_finished_trials()
