"""Router, session store, sandbox guard and capability agents."""
