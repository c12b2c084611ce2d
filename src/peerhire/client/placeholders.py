"""Placeholder dashboard snapshots.

Shown when the dashboard fetch fails, so the caller gets a well-formed
(if empty) dashboard instead of an error. Marked with `placeholder: True`.
"""

from __future__ import annotations

import copy

CLIENT_DASHBOARD = {
    "activeJobs": 0,
    "totalSpent": 0,
    "escrowBalance": 0,
    "recentActivities": [],
    "pendingBids": [],
}

FREELANCER_DASHBOARD = {
    "ongoingProjects": 0,
    "activeApplications": 0,
    "totalEarnings": 0,
    "recentActivities": [],
    "recommendedJobs": [],
}


def placeholder_dashboard(role: str) -> dict:
    if role == "freelancer":
        return {"freelancer": copy.deepcopy(FREELANCER_DASHBOARD), "placeholder": True}
    return {"client": copy.deepcopy(CLIENT_DASHBOARD), "placeholder": True}
