"""Bounded Concurrency Task Queues.

Priority ordered, retrying task queues that cap how many calls of one
workload run at once.
Bounded Context: Task Scheduling
"""
