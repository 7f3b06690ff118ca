"""
Manual probes for Rancher/Kubernetes deployments.

Each module is a standalone command:
- port_check / port_scan: is a TCP port listening inside the Rancher pods
- gomod_compare: diff github.com/rancher/* versions between two go.mod files
- test_plan: Markdown test-plan skeleton from a list of titles
- steve_pods / steve_jobs / steve_backups: Steve API filter/sort/limit checks
- vai_watch / vai_snapshot / vai_query_cleanup: VAI SQLite cache inspection
"""
